from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from staffnotify.db import Base


class Employee(Base):
    """Slice of the shared ``employees`` table read and written by the notification core.

    The remaining columns (password, skills, availability, ...) belong to the
    employee CRUD service and are not mapped here.
    """

    __tablename__ = "employees"

    employee_id: Mapped[str] = mapped_column("empid", String(64), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    role_type: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Legacy rows may hold a JSON-encoded string instead of an array.
    push_subscriptions: Mapped[Any] = mapped_column(JSONB, nullable=True)
