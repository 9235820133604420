"""
Runtime configuration

All settings come from environment variables, read once at startup.
"""

import os
import secrets
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _oauth_clients(providers: List[str]) -> Dict[str, Dict[str, str]]:
    """GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET and so on; providers without an id are skipped."""
    clients = {}
    for provider in providers:
        client_id = os.getenv(f"{provider.upper()}_CLIENT_ID")
        if client_id:
            clients[provider] = {
                "client_id": client_id,
                "client_secret": os.getenv(f"{provider.upper()}_CLIENT_SECRET", ""),
            }
    return clients


class Settings(BaseModel):
    database_url: Optional[str] = Field(None, description="MongoDB connection string")
    database_name: Optional[str] = Field(None, description="MongoDB database name")
    port: int = Field(8000, description="HTTP port for uvicorn")
    log_level: str = Field("INFO")
    pickup_location: str = Field("Denton, Texas", description="Fixed pickup location for every booking")
    session_ttl_seconds: int = Field(7 * 24 * 3600, ge=60)
    oauth_providers: List[str] = Field(default_factory=lambda: ["google", "apple"])
    public_base_url: str = Field("http://localhost:8000")
    db_timeout_ms: int = Field(5000, ge=100, description="Timeout applied to every database call")
    enable_realtime: bool = Field(True, description="Watch the vehicles collection for changes")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    admin_emails: List[str] = Field(default_factory=list, description="Accounts allowed to manage vehicle images")
    oauth_clients: Dict[str, Dict[str, str]] = Field(default_factory=dict, description="client_id/client_secret per provider")
    session_secret: str = Field(default_factory=lambda: secrets.token_urlsafe(32),
                                description="Signs the cookie that carries OAuth handshake state")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            port=int(os.getenv("PORT", 8000)),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            pickup_location=os.getenv("PICKUP_LOCATION", "Denton, Texas"),
            session_ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", 7 * 24 * 3600)),
            oauth_providers=_env_list("OAUTH_PROVIDERS", "google,apple"),
            public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/"),
            db_timeout_ms=int(os.getenv("DB_TIMEOUT_MS", 5000)),
            enable_realtime=_env_bool("ENABLE_REALTIME", True),
            cors_origins=_env_list("CORS_ORIGINS", "*"),
            admin_emails=[e.lower() for e in _env_list("ADMIN_EMAILS", "")],
            oauth_clients=_oauth_clients(_env_list("OAUTH_PROVIDERS", "google,apple")),
            session_secret=os.getenv("SESSION_SECRET") or secrets.token_urlsafe(32),
        )
