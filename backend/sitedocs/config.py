from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    data_path: Path = Path.home() / "SiteDocs"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://127.0.0.1:5173", "http://localhost:5173"]

    # Object storage: signed links under public_base_url are served by the /files route.
    public_base_url: str = "http://127.0.0.1:8000/files"
    signing_secret: str = "change-me-signing-secret"
    signed_url_ttl_seconds: int = 3600

    max_attachment_bytes: int = 10 * 1024 * 1024  # 10 MiB
    max_submission_bytes: int = 20 * 1024 * 1024  # used when a requirement has no max_file_size
    display_max_px: int = 1600
    thumbnail_max_px: int = 320

    aggregation_source_timeout_seconds: float = 5.0
    # 0 disables cross-request caching of the requirement registry.
    registry_cache_seconds: float = 0.0

    @property
    def db_path(self) -> Path:
        return self.data_path / "db.sqlite"

    @property
    def storage_root(self) -> Path:
        return self.data_path / "storage"

    model_config = {"env_prefix": "SITEDOCS_"}


settings = Settings()
