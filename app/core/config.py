import os
from functools import lru_cache

from pydantic_settings import BaseSettings


def _load_doppler_secrets():
    """Load secrets from Doppler API into environment variables.

    Must run BEFORE Settings is instantiated so pydantic can read the env vars.
    """
    token = os.getenv("DOPPLER_TOKEN")
    if not token:
        return

    try:
        import requests
        response = requests.get(
            "https://api.doppler.com/v3/configs/config/secrets/download",
            params={"format": "json"},
            auth=(token, ""),
            timeout=30,
        )
        response.raise_for_status()
        secrets = response.json()

        for key, value in secrets.items():
            if key not in os.environ:  # Don't override existing env vars
                os.environ[key] = value

        print(f"Loaded {len(secrets)} secrets from Doppler")
    except Exception as e:
        print(f"Warning: Failed to load Doppler secrets: {e}")


# Load Doppler secrets into environment BEFORE Settings is instantiated
_load_doppler_secrets()


class Settings(BaseSettings):
    environment: str = "development"
    # Origins allowed in production, e.g. ^https://([a-z0-9-]+\.)?example\.com$
    cors_origin_pattern: str = ""

    # Supabase
    supabase_url: str = ""
    supabase_secret_key: str = ""
    supabase_jwt_secret: str = ""  # JWT secret for HS256 token verification

    # Card sequence (1..N)
    card_sequence_max: int = 10000
    card_validity_days: int = 365

    # Code generation
    default_location_prefix: str = "MO"
    default_passcode_location: str = "PHL"

    # Bulk inserts
    insert_chunk_size: int = 1000
    insert_chunk_delay: float = 0.1  # seconds between chunks

    # Version sync
    version_poll_interval: float = 30.0
    notification_buffer_size: int = 50

    # Session drafts
    draft_save_delay: float = 5.0
    draft_expiry_hours: int = 24
    draft_sweep_interval: float = 3600.0

    # Start the version reconciler and draft sweeper with the app
    run_background_tasks: bool = True

    # Range assignment onto cards held by another clinic: reject | overwrite | skip
    reassignment_policy: str = "reject"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
