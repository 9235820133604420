"""
OAuth sign-in

Google and Apple are OpenID Connect providers, so authlib can discover their
endpoints and verify the returned ID token. The handshake state lives in the
signed Starlette session cookie; only the verified email and claims reach
IdentityService.sign_in_with_oauth.
"""

import json
import logging
from typing import Any, Dict, Optional, Tuple

from authlib.integrations.starlette_client import OAuth

from config import Settings
from errors import AuthError

logger = logging.getLogger(__name__)

PROVIDERS = {
    "google": {
        "server_metadata_url": "https://accounts.google.com/.well-known/openid-configuration",
        "client_kwargs": {"scope": "openid email profile"},
    },
    "apple": {
        "server_metadata_url": "https://appleid.apple.com/.well-known/openid-configuration",
        "client_kwargs": {"scope": "openid email name"},
        # Apple posts the result back when name or email is requested
        "authorize_params": {"response_mode": "form_post"},
    },
}


def build_oauth(settings: Settings) -> OAuth:
    oauth = OAuth()
    for provider in settings.oauth_providers:
        creds = settings.oauth_clients.get(provider)
        if provider not in PROVIDERS or not creds:
            logger.info("OAuth provider %s not configured", provider)
            continue
        oauth.register(provider, client_id=creds["client_id"], client_secret=creds["client_secret"],
                       **PROVIDERS[provider])
    return oauth


def get_client(oauth: OAuth, provider: str):
    client = oauth.create_client(provider)
    if client is None:
        raise AuthError(f"Unsupported provider: {provider}")
    return client


def callback_uri(base_url: str, provider: str) -> str:
    return f"{base_url.rstrip('/')}/api/auth/oauth/{provider}/callback"


def identity_from_token(token: Dict[str, Any], posted_user: Optional[str] = None) -> Tuple[str, Dict[str, Any]]:
    """Email and profile metadata from a completed token exchange.

    Apple sends the user's name only once, as a JSON "user" form field on the
    first sign-in; it is folded into the metadata as given/family name.
    """
    claims = dict(token.get("userinfo") or {})
    email = claims.get("email")
    if not email:
        raise AuthError("The provider did not share an email address")
    if claims.get("email_verified") in (False, "false"):
        raise AuthError("Please verify your email address with the provider first")
    if posted_user:
        try:
            name = json.loads(posted_user).get("name") or {}
        except (ValueError, AttributeError):
            name = {}
        if name.get("firstName"):
            claims.setdefault("given_name", name["firstName"])
        if name.get("lastName"):
            claims.setdefault("family_name", name["lastName"])
    return email, claims
