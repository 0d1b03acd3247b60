"""
This module re-exports the OAuthCredential model from the database package for use in connector-related code.
"""

from database.models import OAuthCredential  # noqa: F401

__all__ = ["OAuthCredential"]
