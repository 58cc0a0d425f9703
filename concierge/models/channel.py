from __future__ import annotations

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from concierge.models.base import Base, TimestampMixin, UUIDMixin


class ChannelConfig(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "channel_configs"
    __table_args__ = (
        UniqueConstraint("business_id", "channel", name="uq_channel_configs_business_channel"),
        Index(
            "uq_channel_configs_active_routing_key",
            "channel",
            "routing_key",
            unique=True,
            postgresql_where=text("is_active"),
        ),
    )

    business_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    channel: Mapped[str] = mapped_column(String(32), nullable=False)
    routing_key: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    config: Mapped[dict] = mapped_column(JSONB, default=dict, nullable=False)

    business: Mapped["Business"] = relationship(back_populates="channel_configs")
