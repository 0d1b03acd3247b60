"""
The closed set of supported sportsbooks.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from connectors.errors import InvalidRequest


class Sportsbook(str, Enum):
    BETWIZ = "betwiz"
    WINNINGEDGE = "winningedge"

    @property
    def display_name(self) -> str:
        return {"betwiz": "BetWiz", "winningedge": "WinningEdge"}[self.value]


def parse_sportsbook(value: Any) -> Sportsbook:
    """
    Validate a sportsbook identifier coming from a path, query or body.

    Raises ``InvalidRequest`` for anything outside the two known values.
    """
    if isinstance(value, Sportsbook):
        return value
    if not value:
        raise InvalidRequest("Missing required field: sportsbook")
    try:
        return Sportsbook(str(value))
    except ValueError:
        raise InvalidRequest("Invalid sportsbook") from None


def normalize_owner(owner: Any) -> str:
    """Owner identities are stored as trimmed, lower-cased emails."""
    if not isinstance(owner, str) or not owner.strip():
        raise InvalidRequest("Missing owner identity")
    return owner.strip().lower()
