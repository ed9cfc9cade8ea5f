"""Tests for HttpIdentityVerifier - userinfo lookups with optional Valkey cache."""

import json
from unittest.mock import Mock

import pytest
import requests
import responses

from auth.exceptions import IdentityProviderError, InvalidTokenError
from auth.identity import HttpIdentityVerifier, VerifiedIdentity
from clients.valkey_client import ValkeyClient

USERINFO_URL = "https://idp.example.com/userinfo"


@pytest.fixture
def verifier():
    return HttpIdentityVerifier(USERINFO_URL)


@pytest.fixture
def cache():
    valkey = Mock(spec=ValkeyClient)
    valkey.get.return_value = None
    return valkey


class TestInit:

    def test_requires_userinfo_url(self):
        with pytest.raises(ValueError, match="userinfo_url"):
            HttpIdentityVerifier("")


class TestVerify:

    @responses.activate
    def test_valid_token(self, verifier):
        responses.add(responses.GET, USERINFO_URL, json={"sub": "idp|42", "email": "a@test.local"}, status=200)

        identity = verifier.verify("tok")

        assert identity == VerifiedIdentity(user_id="idp|42", email="a@test.local")
        assert responses.calls[0].request.headers["Authorization"] == "Bearer tok"

    @responses.activate
    def test_id_claim_accepted_without_sub(self, verifier):
        responses.add(responses.GET, USERINFO_URL, json={"id": 42, "email": "a@test.local"}, status=200)

        assert verifier.verify("tok").user_id == "42"

    def test_empty_token(self, verifier):
        with pytest.raises(InvalidTokenError):
            verifier.verify("")

    @pytest.mark.parametrize("status", [401, 403])
    @responses.activate
    def test_rejected_token(self, verifier, status):
        responses.add(responses.GET, USERINFO_URL, json={}, status=status)

        with pytest.raises(InvalidTokenError):
            verifier.verify("tok")

    @responses.activate
    def test_provider_error(self, verifier):
        responses.add(responses.GET, USERINFO_URL, body="oops", status=500)

        with pytest.raises(IdentityProviderError, match="500"):
            verifier.verify("tok")

    @responses.activate
    def test_provider_unreachable(self, verifier):
        responses.add(responses.GET, USERINFO_URL, body=requests.exceptions.ConnectionError("down"))

        with pytest.raises(IdentityProviderError, match="unreachable"):
            verifier.verify("tok")

    @responses.activate
    def test_missing_email_claim(self, verifier):
        responses.add(responses.GET, USERINFO_URL, json={"sub": "idp|42"}, status=200)

        with pytest.raises(InvalidTokenError, match="email"):
            verifier.verify("tok")


class TestCache:

    @responses.activate
    def test_successful_lookup_is_cached_under_token_hash(self, cache):
        responses.add(responses.GET, USERINFO_URL, json={"sub": "idp|42", "email": "a@test.local"}, status=200)
        verifier = HttpIdentityVerifier(USERINFO_URL, valkey=cache, cache_ttl_seconds=120)

        verifier.verify("secret-token")

        key, value, ttl = cache.set.call_args[0]
        assert key.startswith("identity:")
        assert "secret-token" not in key
        assert json.loads(value) == {"user_id": "idp|42", "email": "a@test.local"}
        assert ttl == 120

    @responses.activate
    def test_cache_hit_skips_provider(self, cache):
        cache.get.return_value = json.dumps({"user_id": "idp|7", "email": "c@test.local"})
        verifier = HttpIdentityVerifier(USERINFO_URL, valkey=cache)

        assert verifier.verify("tok").user_id == "idp|7"
        assert len(responses.calls) == 0
