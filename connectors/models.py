"""
This module re-exports the Connection model from the database package for use in connector-related code.
"""

from database.models import Connection  # noqa: F401

__all__ = ["Connection"]
