from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from staffnotify.db import SessionLocal
from staffnotify.models import Employee

UPDATABLE_FIELDS = frozenset({"last_login", "updated_at", "push_subscriptions"})


@dataclass(frozen=True, slots=True)
class EmployeeRecord:
    employee_id: str
    role_type: str | None = None
    email: str | None = None
    last_login: datetime | None = None
    updated_at: datetime | None = None
    push_subscriptions: Any = None


def _to_record(row: Employee) -> EmployeeRecord:
    return EmployeeRecord(
        employee_id=row.employee_id,
        role_type=row.role_type,
        email=row.email,
        last_login=row.last_login,
        updated_at=row.updated_at,
        push_subscriptions=row.push_subscriptions,
    )


class EmployeeStore:
    """Blocking read/update primitives over the ``employees`` table.

    Every call opens its own session and returns detached snapshots, so the
    async services can run these methods through ``asyncio.to_thread``.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def get_employee(self, employee_id: str) -> EmployeeRecord | None:
        with self._session_factory() as db:
            row = db.get(Employee, employee_id)
            if row is None:
                return None
            return _to_record(row)

    def list_employees(self, *, exclude_role_type: str | None = None) -> list[EmployeeRecord]:
        stmt = select(Employee).order_by(Employee.employee_id.asc())
        if exclude_role_type is not None:
            stmt = stmt.where(
                or_(
                    Employee.role_type.is_(None),
                    Employee.role_type != exclude_role_type,
                )
            )
        with self._session_factory() as db:
            return [_to_record(row) for row in db.scalars(stmt).all()]

    def update_employee_fields(self, employee_id: str, **fields: Any) -> bool:
        unknown = sorted(set(fields) - UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported employee fields: {', '.join(unknown)}")

        with self._session_factory() as db:
            row = db.get(Employee, employee_id)
            if row is None:
                return False
            for key, value in fields.items():
                setattr(row, key, value)
            db.commit()
        return True
