"""SQLAlchemy models for the versioned state store."""

from typing import Any

from sqlalchemy import JSON, Float, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests).
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JsonType,
    }


class StateEntry(Base):
    """One versioned key in the state store."""

    __tablename__ = "state_entries"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    # Epoch seconds; kept as floats so remote timestamps round-trip exactly.
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)
    expires_at: Mapped[float | None] = mapped_column(Float, nullable=True, index=True)
    region: Mapped[str] = mapped_column(String(64), nullable=False)
    provenance: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
