import pytest

from auth import (
    SIGNED_IN,
    SIGNED_OUT,
    TOKEN_REFRESHED,
    USER_UPDATED,
    AuthEvents,
    IdentityService,
    ProfileService,
    names_from_metadata,
)
from errors import AuthError, InputError


@pytest.fixture
def events():
    return AuthEvents()


@pytest.fixture
def profiles(db, events):
    service = ProfileService(db, events)
    sub = events.subscribe(service.bootstrap)
    yield service
    sub.unsubscribe()


@pytest.fixture
def identity(db, events, clock, profiles):
    return IdentityService(db, events, session_ttl_seconds=3600,
                           oauth_providers=["google", "apple"], clock=clock)


@pytest.fixture
def recorded(events):
    seen = []
    sub = events.subscribe(lambda e: seen.append(e.type))
    yield seen
    sub.unsubscribe()


def test_sign_up_creates_user_session_and_profile(identity, profiles, recorded):
    session = identity.sign_up("Ana@Example.com", "secret1", {"first_name": "Ana", "last_name": "Lopez"})

    assert session.user.email == "ana@example.com"
    assert identity.get_session(session.access_token).user_id == session.user_id
    profile = profiles.get(session.user_id)
    assert (profile.first_name, profile.last_name) == ("Ana", "Lopez")
    assert recorded == [SIGNED_IN]


def test_tokens_are_not_stored_in_clear(db, identity):
    session = identity.sign_up("ana@example.com", "secret1")

    stored = db["sessions"].find_one({})
    assert stored["_id"] != session.access_token
    assert db["users"].find_one({})["password_hash"] != "secret1"


def test_sign_up_validation(identity):
    with pytest.raises(InputError, match="at least 6"):
        identity.sign_up("ana@example.com", "abc")
    with pytest.raises(InputError, match="do not match"):
        identity.sign_up("ana@example.com", "secret1", confirm_password="secret2")


def test_duplicate_sign_up_rejected(identity):
    identity.sign_up("ana@example.com", "secret1")
    with pytest.raises(AuthError, match="already registered"):
        identity.sign_up("ANA@example.com", "secret2")


def test_sign_in_with_password(identity):
    identity.sign_up("ana@example.com", "secret1")

    session = identity.sign_in_with_password("ana@example.com", "secret1")

    assert identity.get_session(session.access_token) is not None


@pytest.mark.parametrize("email,password", [("ana@example.com", "wrong!!"), ("bob@example.com", "secret1")])
def test_bad_credentials(identity, email, password):
    identity.sign_up("ana@example.com", "secret1")

    with pytest.raises(AuthError, match="Invalid login credentials"):
        identity.sign_in_with_password(email, password)


def test_session_expires(identity, clock):
    session = identity.sign_up("ana@example.com", "secret1")

    clock.advance(hours=2)

    assert identity.get_session(session.access_token) is None
    with pytest.raises(AuthError):
        identity.require_session(session.access_token)


def test_refresh_rotates_token(identity, recorded):
    session = identity.sign_up("ana@example.com", "secret1")

    refreshed = identity.refresh_session(session.access_token)

    assert refreshed.access_token != session.access_token
    assert identity.get_session(session.access_token) is None
    assert identity.get_session(refreshed.access_token).user_id == session.user_id
    assert recorded == [SIGNED_IN, TOKEN_REFRESHED]


def test_sign_out(identity, recorded):
    session = identity.sign_up("ana@example.com", "secret1")

    identity.sign_out(session.access_token)

    assert identity.get_session(session.access_token) is None
    assert recorded == [SIGNED_IN, SIGNED_OUT]


def test_oauth_sign_in_bootstraps_profile(identity, profiles):
    session = identity.sign_in_with_oauth(
        "google", "maria.g@example.com", {"full_name": "Maria de la Cruz"}
    )

    assert session.user.provider == "google"
    profile = profiles.get(session.user_id)
    assert (profile.first_name, profile.last_name) == ("Maria", "de la Cruz")

    again = identity.sign_in_with_oauth("google", "maria.g@example.com")
    assert again.user_id == session.user_id


def test_oauth_unknown_provider(identity):
    with pytest.raises(AuthError, match="Unsupported provider"):
        identity.sign_in_with_oauth("myspace", "ana@example.com")


def test_oauth_user_cannot_use_password(identity):
    identity.sign_in_with_oauth("apple", "ana@example.com")

    with pytest.raises(AuthError):
        identity.sign_in_with_password("ana@example.com", "")


def test_unsubscribed_bootstrap_creates_no_profile(db, events, clock):
    profiles = ProfileService(db, events)
    identity = IdentityService(db, events, 3600, ["google"], clock)

    with events.subscribe(profiles.bootstrap):
        pass
    session = identity.sign_up("ana@example.com", "secret1")

    assert profiles.get(session.user_id) is None
    assert profiles.ensure_profile(session.user).first_name == "ana"


def test_profile_update_emits_user_updated(identity, profiles, recorded):
    session = identity.sign_up("ana@example.com", "secret1", {"first_name": "Ana"})

    profile = profiles.update(session.user, phone=" 940-555-0101 ")

    assert profile.phone == "940-555-0101"
    assert profile.first_name == "Ana"
    assert recorded[-1] == USER_UPDATED


@pytest.mark.parametrize("metadata,expected", [
    ({"given_name": "Ana", "family_name": "Lopez"}, ("Ana", "Lopez")),
    ({"first_name": "Ana", "last_name": "Lopez"}, ("Ana", "Lopez")),
    ({"name": "Ana Maria Lopez"}, ("Ana", "Maria Lopez")),
    ({}, ("ana.lopez", "")),
])
def test_names_from_metadata(metadata, expected):
    assert names_from_metadata("ana.lopez@example.com", metadata) == expected


def test_names_fall_back_to_user():
    assert names_from_metadata("", {}) == ("User", "")
