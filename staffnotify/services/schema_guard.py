from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.engine import Engine


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "employees": {"empid", "role_type", "last_login", "updated_at", "push_subscriptions"},
}

# Column type names that can carry a JSON list of subscriptions.
ACCEPTED_SUBSCRIPTION_TYPES = {"JSONB", "JSON", "TEXT"}


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)

    try:
        inspector = inspect(engine)
    except Exception as exc:
        return SchemaGuardResult(
            ok=False,
            checked_at_utc=checked_at_utc,
            issues=[f"DATABASE_UNREACHABLE:{exc.__class__.__name__}"],
        )

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            columns = {str(item.get("name")): item for item in inspector.get_columns(table_name)}
        except Exception as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in columns)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

        subscription_column = columns.get("push_subscriptions")
        if subscription_column is not None:
            type_name = str(subscription_column.get("type") or "").upper()
            if not any(type_name.startswith(accepted) for accepted in ACCEPTED_SUBSCRIPTION_TYPES):
                warnings.append(f"UNEXPECTED_COLUMN_TYPE:{table_name}.push_subscriptions:{type_name}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
