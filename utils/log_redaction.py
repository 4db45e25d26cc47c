"""
Logging filter that masks credentials before records reach any handler.

Provider error payloads are logged verbatim for diagnosis; this keeps
bearer tokens, OAuth tokens and client secrets out of the log sink.
"""

from __future__ import annotations

import logging
import re

_MASK = "[REDACTED]"

_PATTERNS = [
    re.compile(r"(?i)\b(Bearer|OAuth|Basic)\s+[A-Za-z0-9\-._~+/]{16,}=*"),
    re.compile(
        r"(?i)([\"']?\b(?:access_token|refresh_token|id_token|client_secret|api_key|apikey|code)\b[\"']?\s*[:=]\s*[\"']?)[^\"'&,\s}]+"
    ),
]


def redact(text: str) -> str:
    text = _PATTERNS[0].sub(lambda m: f"{m.group(1)} {_MASK}", text)
    return _PATTERNS[1].sub(lambda m: f"{m.group(1)}{_MASK}", text)


class RedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # uvicorn's access formatter unpacks args, so clean them in place first
        if isinstance(record.args, tuple):
            record.args = tuple(redact(a) if isinstance(a, str) else a for a in record.args)
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def _attach(filterer: logging.Filterer) -> None:
    if not any(isinstance(f, RedactingFilter) for f in filterer.filters):
        filterer.addFilter(RedactingFilter())


def install(*logger_names: str) -> None:
    """
    Attach the filter to every root handler, and to each named logger and
    its handlers.

    Loggers such as ``uvicorn.access`` carry their own handlers and do not
    propagate, so root handlers never see their records.  A filter on the
    logger itself survives uvicorn replacing those handlers at startup.
    """
    for handler in logging.getLogger().handlers:
        _attach(handler)
    for name in logger_names:
        target = logging.getLogger(name)
        _attach(target)
        for handler in target.handlers:
            _attach(handler)
