import json

import pytest

from config import Settings
from errors import AuthError
from oauth import build_oauth, callback_uri, get_client, identity_from_token


def test_only_configured_providers_are_registered():
    settings = Settings(
        oauth_providers=["google", "apple", "myspace"],
        oauth_clients={"google": {"client_id": "id", "client_secret": "secret"},
                       "myspace": {"client_id": "id", "client_secret": "secret"}},
    )
    oauth = build_oauth(settings)

    assert get_client(oauth, "google").client_id == "id"
    for provider in ("apple", "myspace"):
        with pytest.raises(AuthError, match="Unsupported provider"):
            get_client(oauth, provider)


def test_callback_uri():
    assert callback_uri("https://rentals.example.com/", "apple") == \
        "https://rentals.example.com/api/auth/oauth/apple/callback"


def test_identity_from_token():
    email, claims = identity_from_token({"userinfo": {"email": "ana@example.com", "given_name": "Ana"}})

    assert email == "ana@example.com"
    assert claims["given_name"] == "Ana"


def test_posted_apple_name_fills_missing_claims():
    posted = json.dumps({"name": {"firstName": "Ana", "lastName": "Lopez"}})

    _, claims = identity_from_token({"userinfo": {"email": "ana@example.com"}}, posted)

    assert (claims["given_name"], claims["family_name"]) == ("Ana", "Lopez")


def test_malformed_posted_user_is_ignored():
    _, claims = identity_from_token({"userinfo": {"email": "ana@example.com"}}, "not json")

    assert "given_name" not in claims


@pytest.mark.parametrize("userinfo", [{}, {"email": "ana@example.com", "email_verified": False}])
def test_unusable_identity_rejected(userinfo):
    with pytest.raises(AuthError):
        identity_from_token({"userinfo": userinfo})
