from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from productsync.control_database import Base

TARGET_TENANTS_KEY = "target_tenants"


class SyncSetting(Base):
    __tablename__ = "sync_settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[list | None] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
