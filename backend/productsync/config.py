from pathlib import Path
from typing import Dict, List
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # PostgreSQL control database: users, sync progress, sync settings
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "productsync"
    postgres_user: str = "productsync"
    postgres_password: str = ""

    # Full SQLAlchemy URL; overrides the postgres_* parts when set
    control_database_url: str = ""

    # Tenant id -> async SQLAlchemy URL, e.g. {"main": "postgresql+asyncpg://..."}
    tenant_databases: Dict[str, str] = {}
    master_tenant: str = "main"

    # Each tenant keeps its asset files under media_root/<tenant id>/
    media_root: Path = Path("/app/data/media")

    # Replaced on every replica even when the source has no terms in them
    product_taxonomies: List[str] = ["product_cat", "product_tag", "product_type", "product_visibility"]

    # Periodic chunk trigger
    scheduler_enabled: bool = True
    sync_interval_minutes: int = 5

    # Human-readable replication log, appended to when set
    sync_log_file: str = ""

    # JWT
    jwt_secret: str = "change-this-to-a-random-secret"
    jwt_expire_hours: int = 8

    # Seeded on startup when a password is given
    admin_username: str = "admin"
    admin_password: str = ""

    # CORS
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def control_url(self) -> str:
        if self.control_database_url:
            return self.control_database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{quote_plus(self.postgres_password)}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )


settings = Settings()
