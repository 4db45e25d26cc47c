"""
connectors — OAuth integration module for external services.

Provides a generic connector framework that handles:
  • OAuth2 auth-URL generation and nonce-checked ``state``
  • Callback handling (code → token exchange)
  • Per-user connection storage with upsert semantics
  • AES-GCM encryption of tokens at rest
  • One-shot refresh-and-retry when a provider answers 401
  • Disconnect (with best-effort revocation)

Each provider (PayPal, Mailchimp, Gmail) is a subclass of BaseConnector.
"""
