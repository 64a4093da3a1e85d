"""
Domain model: the customer domain whose HubSpot accounts are synced.

Each connected HubSpot portal is stored as one JSON document in
``hubspot_accounts``:

    {"hubId": "...", "accessToken": "...", "refreshToken": "...",
     "lastPulledDates": {"contacts": ..., "companies": ..., "meetings": ...}}
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from models.database import Base


class Domain(Base):
    """A customer domain and its HubSpot integration state."""

    __tablename__ = "domains"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    api_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
    hubspot_accounts: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list
    )

    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=True
    )
