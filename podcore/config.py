from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://localhost:5432/podcore"
    env: Literal["dev", "stage", "prod"] = "dev"
    debug: bool = False
    log_level: str = "INFO"
    access_log: bool = True
    sql_echo: bool = False
    auto_init_db: bool = True

    # Artifact storage (S3-compatible: R2, Tigris, MinIO)
    s3_bucket_name: Optional[str] = None
    s3_region: str = "auto"
    s3_endpoint_url: Optional[str] = None
    s3_access_key_id: Optional[str] = None
    s3_secret_access_key: Optional[str] = None
    s3_public_url_base: Optional[str] = None
    storage_local: bool = False  # True = local filesystem (dev only)
    storage_local_root: str = "var/storage"
    presigned_url_ttl_seconds: int = 3600

    # Static site rebuild
    deploy_hook_url: Optional[str] = None
    deploy_in_dev: bool = False

    # Spotify Web API (client credentials flow)
    spotify_client_id: Optional[str] = None
    spotify_client_secret: Optional[str] = None
    spotify_market: str = "JP"

    # Transcription soft lock
    transcription_lock_ttl_seconds: int = 3600
    transcription_queue_max_limit: int = 10

    # External URL auto-fetch
    apple_request_interval_seconds: float = 5.0
    apple_lookup_limit: int = 200
    auto_fetch_min_age_hours: int = 24
    auto_fetch_min_interval_seconds: int = 3600

    @property
    def is_dev(self) -> bool:
        return self.env == "dev" or self.debug is True

    @property
    def spotify_configured(self) -> bool:
        return bool(self.spotify_client_id and self.spotify_client_secret)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
