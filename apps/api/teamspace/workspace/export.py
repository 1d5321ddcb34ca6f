from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from typing import Any

from teamspace.workspace.schemas import ProjectRead, TaskRead


TASK_COLUMNS = [
    "id",
    "title",
    "company_name",
    "assigned_to",
    "assigned_by",
    "due_date",
    "priority",
    "status",
    "created_at",
]

DEAL_COLUMNS = [
    "id",
    "title",
    "company_name",
    "stage",
    "status",
    "budget",
    "spent",
    "probability",
    "progress",
    "expected_close_date",
    "owner_id",
]


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ";".join(_cell(item) for item in value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def rows_to_csv(rows: Iterable[Mapping[str, Any]], columns: Sequence[str]) -> str:
    """Flat comma-joined projection: header row, then one line per row.

    Values are written verbatim; a comma inside a value shifts the columns of
    that line. Existing consumers parse this format, so it is kept as is.
    """
    lines = [",".join(columns)]
    for row in rows:
        lines.append(",".join(_cell(row.get(column)) for column in columns))
    return "\n".join(lines)


def tasks_to_csv(tasks: Iterable[TaskRead]) -> str:
    return rows_to_csv((dict(task) for task in tasks), TASK_COLUMNS)


def deals_to_csv(projects: Iterable[ProjectRead]) -> str:
    return rows_to_csv((dict(project) for project in projects), DEAL_COLUMNS)


def export_filename(kind: str, today: date | None = None) -> str:
    return f"{kind}_export_{(today or date.today()).isoformat()}.csv"
