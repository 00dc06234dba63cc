from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from datetime import datetime

class Base(DeclarativeBase):
    pass

class GateStatus(Base):
    __tablename__ = "gate_statuses"
    run_id: Mapped[str] = mapped_column(sa.Text, primary_key=True)
    workflow: Mapped[str] = mapped_column(sa.Text, nullable=False)
    overall: Mapped[str] = mapped_column(sa.Text, nullable=False)
    ref: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    payload_json: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default=sa.text("'{}'::jsonb"))
    received_at: Mapped[datetime] = mapped_column(sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False)
    reports: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default=sa.text("1"))
