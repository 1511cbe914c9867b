from functools import lru_cache
from typing import List, Optional
import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()  # Load variables from .env file

PLACEHOLDER_VALUES = {
    "your_supabase_anon_key_here",
    "your_supabase_service_role_key_here",
}


class ConfigurationError(Exception):
    """Raised when a required setting is missing."""


class Settings(BaseModel):
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    # None means "not set": the hosted backend is used whenever credentials are valid
    supabase_connection_enabled: Optional[bool] = None
    supabase_storage_bucket: str = "photos"
    jwt_secret: Optional[str] = None
    cors_origins: List[str] = ["http://localhost:3000"]
    local_storage_base_url: str = "http://localhost:8000/storage"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        enabled = os.getenv("SUPABASE_CONNECTION_ENABLED")
        origins = os.getenv("CORS_ORIGINS")
        values = {
            "supabase_url": os.getenv("SUPABASE_URL"),
            "supabase_anon_key": os.getenv("SUPABASE_ANON_KEY"),
            "supabase_service_role_key": os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
            "supabase_connection_enabled": None if enabled is None else enabled.lower() == "true",
            "jwt_secret": os.getenv("JWT_SECRET"),
        }
        if os.getenv("SUPABASE_STORAGE_BUCKET"):
            values["supabase_storage_bucket"] = os.getenv("SUPABASE_STORAGE_BUCKET")
        if origins:
            values["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
        if os.getenv("LOCAL_STORAGE_BASE_URL"):
            values["local_storage_base_url"] = os.getenv("LOCAL_STORAGE_BASE_URL")
        return cls(**values)

    def has_valid_credentials(self) -> bool:
        """Check that every hosted-backend credential is set and not a placeholder."""
        keys = (self.supabase_anon_key, self.supabase_service_role_key)
        if not self.supabase_url or not all(keys):
            return False
        return not any(key in PLACEHOLDER_VALUES for key in keys)

    @property
    def hosted_backend_enabled(self) -> bool:
        if self.supabase_connection_enabled is False:
            return False
        return self.has_valid_credentials()

    def require_jwt_secret(self) -> str:
        if not self.jwt_secret:
            raise ConfigurationError("JWT_SECRET environment variable is required but not set")
        return self.jwt_secret


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings.from_env()
