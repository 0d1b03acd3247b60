"""
Tests for sportsbook parsing, owner normalization and token response parsing.
"""

import pytest

from connectors.errors import InvalidRequest
from connectors.providers import Sportsbook, normalize_owner, parse_sportsbook
from connectors.schemas import ExchangeRequest, TokenPair


class TestParseSportsbook:
    def test_known_values(self):
        assert parse_sportsbook("betwiz") is Sportsbook.BETWIZ
        assert parse_sportsbook("winningedge") is Sportsbook.WINNINGEDGE
        assert parse_sportsbook(Sportsbook.BETWIZ) is Sportsbook.BETWIZ

    @pytest.mark.parametrize("value", ["BetWiz", "fanduel", " betwiz"])
    def test_unknown_values(self, value):
        with pytest.raises(InvalidRequest, match="Invalid sportsbook"):
            parse_sportsbook(value)

    @pytest.mark.parametrize("value", [None, ""])
    def test_missing_value(self, value):
        with pytest.raises(InvalidRequest, match="Missing"):
            parse_sportsbook(value)


def test_normalize_owner():
    assert normalize_owner("  Owner@Example.com ") == "owner@example.com"
    with pytest.raises(InvalidRequest):
        normalize_owner("   ")


class TestTokenPair:
    def test_defaults(self):
        pair = TokenPair.from_response({"access_token": "at", "expires_in": "1800"})

        assert pair.expires_in == 1800
        assert pair.refresh_token is None
        assert pair.scopes is None

    def test_missing_expiry_is_an_error(self):
        with pytest.raises(KeyError):
            TokenPair.from_response({"access_token": "at", "refresh_token": "rt"})

    def test_empty_refresh_token_counts_as_missing(self):
        assert TokenPair.from_response({"access_token": "at", "refresh_token": "", "expires_in": 60}).refresh_token is None

    def test_repr_hides_tokens(self):
        pair = TokenPair.from_response({"access_token": "secret-at", "refresh_token": "secret-rt", "expires_in": 60})

        assert "secret" not in repr(pair)
        assert "secret" not in str(pair)


def test_exchange_request_accepts_camel_case_verifier():
    body = ExchangeRequest.model_validate({"code": "c", "codeVerifier": "v", "sportsbook": "betwiz"})
    assert body.code_verifier == "v"
