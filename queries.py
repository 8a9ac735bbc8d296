"""Translation of list-query parameters into SQLAlchemy criteria.

GET /api/users and GET /api/tasks take Mongo-flavoured JSON parameters:

    where   {"completed": false, "deadline": {"$lt": "2026-01-01"}}
    sort    {"deadline": 1, "name": -1}
    select  {"name": 1, "_id": 0}

plus ``skip``, ``limit`` and ``count``. Anything malformed is reported as a
ValidationError before the database is touched.
"""
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from pydantic import TypeAdapter, ValidationError as PydanticValidationError
from sqlalchemy import Boolean, DateTime, and_, or_, not_, true, false, func, select as sa_select

from errors import ValidationError
from models import Task, User, PendingTask

# stands in for the relationship-backed User.pendingTasks array
PENDING_TASKS = object()

TASK_FIELDS = {
    "_id": Task.id,
    "name": Task.name,
    "description": Task.description,
    "deadline": Task.deadline,
    "completed": Task.completed,
    "assignedUser": Task.assigned_user,
    "assignedUserName": Task.assigned_user_name,
    "createdAt": Task.created_at,
    "updatedAt": Task.updated_at,
}

USER_FIELDS = {
    "_id": User.id,
    "name": User.name,
    "email": User.email,
    "pendingTasks": PENDING_TASKS,
    "createdAt": User.created_at,
    "updatedAt": User.updated_at,
}

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_DATETIME = TypeAdapter(datetime)


@dataclass
class ListQuery:
    where: dict = field(default_factory=dict)
    sort: Optional[dict] = None
    select: Optional[dict] = None
    skip: int = 0
    limit: Optional[int] = None
    count: bool = False

    @property
    def targets_id(self) -> bool:
        return "_id" in self.where


def _json_param(params: Mapping[str, str], name: str) -> Optional[dict]:
    raw = params.get(name)
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        raise ValidationError(f"Invalid JSON in {name} parameter")
    if not isinstance(value, dict):
        raise ValidationError(f"Invalid JSON in {name} parameter")
    return value


def _int_param(params: Mapping[str, str], name: str) -> Optional[int]:
    raw = params.get(name)
    if not raw:
        return None
    # same leniency as parseInt: "10abc" is 10
    match = _LEADING_INT.match(raw)
    if match is None or int(match.group(1)) < 0:
        raise ValidationError(f"Invalid {name} parameter")
    return int(match.group(1))


def parse_list_query(params: Mapping[str, str], default_limit: Optional[int] = None) -> ListQuery:
    query = ListQuery(limit=default_limit)
    query.where = _json_param(params, "where") or {}
    query.sort = _json_param(params, "sort")
    query.select = parse_select(params)

    skip = _int_param(params, "skip")
    if skip is not None:
        query.skip = skip
    limit = _int_param(params, "limit")
    if limit is not None:
        # limit=0 means no limit at all, not an empty page
        query.limit = limit or None

    query.count = params.get("count") in ("true", "1")
    return query


def parse_select(params: Mapping[str, str]) -> Optional[dict]:
    select = _json_param(params, "select")
    if not select:
        return select
    for key, flag in select.items():
        if not isinstance(flag, (bool, int)) or flag not in (0, 1):
            raise ValidationError(f"Invalid value for {key} in select parameter")
    flags = {bool(flag) for key, flag in select.items() if key != "_id"}
    if len(flags) > 1:
        raise ValidationError("Cannot mix inclusion and exclusion in select parameter")
    return select


def project(document: dict, select: Optional[dict]) -> dict:
    """Apply a select projection to a serialized document."""
    if not select:
        return document
    keep_id = bool(select.get("_id", 1))
    inclusive = any(bool(flag) for key, flag in select.items() if key != "_id")
    if inclusive:
        wanted = {key for key, flag in select.items() if flag}
        return {
            key: value for key, value in document.items()
            if key in wanted or (key == "_id" and keep_id)
        }
    dropped = {key for key, flag in select.items() if not flag}
    return {key: value for key, value in document.items() if key not in dropped}


# ---- where ----

def build_criteria(where: dict, fields: dict) -> list:
    return [_clause(key, value, fields) for key, value in where.items()]


def _clause(key: str, value: Any, fields: dict):
    if key in ("$and", "$or", "$nor"):
        if not isinstance(value, list) or not value or not all(isinstance(v, dict) for v in value):
            raise ValidationError(f"{key} in where parameter must be a non-empty array of objects")
        parts = [and_(true(), *build_criteria(sub, fields)) for sub in value]
        if key == "$and":
            return and_(*parts)
        if key == "$or":
            return or_(*parts)
        return not_(or_(*parts))

    if key not in fields:
        raise ValidationError(f"Unknown field in where parameter: {key}")
    column = fields[key]

    if isinstance(value, dict) and value and all(k.startswith("$") for k in value):
        conditions = [(op, arg) for op, arg in value.items()]
    else:
        conditions = [("$eq", value)]

    if column is PENDING_TASKS:
        return and_(*[_pending_condition(op, arg) for op, arg in conditions])
    return and_(*[_column_condition(key, column, op, arg) for op, arg in conditions])


def _coerce(key: str, column, value: Any):
    if value is None:
        return None
    column_type = column.property.columns[0].type
    if isinstance(column_type, DateTime):
        try:
            parsed = _DATETIME.validate_python(value)
        except PydanticValidationError:
            raise ValidationError(f"Invalid date for {key} in where parameter")
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
    if isinstance(column_type, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise ValidationError(f"Invalid boolean for {key} in where parameter")
    if isinstance(value, (dict, list)):
        raise ValidationError(f"Invalid value for {key} in where parameter")
    return str(value)


def _list_arg(op: str, arg: Any) -> list:
    if not isinstance(arg, list):
        raise ValidationError(f"{op} in where parameter expects an array")
    return arg


def _column_condition(key: str, column, op: str, arg: Any):
    if op == "$exists":
        # every field is always present on these documents
        return true() if arg else false()
    if op in ("$in", "$nin"):
        values = [_coerce(key, column, v) for v in _list_arg(op, arg)]
        return column.in_(values) if op == "$in" else column.not_in(values)

    value = _coerce(key, column, arg)
    if op == "$eq":
        return column.is_(None) if value is None else column == value
    if op == "$ne":
        return column.is_not(None) if value is None else column != value
    if value is None:
        raise ValidationError(f"{op} in where parameter needs a value")
    if op == "$gt":
        return column > value
    if op == "$gte":
        return column >= value
    if op == "$lt":
        return column < value
    if op == "$lte":
        return column <= value
    raise ValidationError(f"Unsupported operator in where parameter: {op}")


def _pending_condition(op: str, arg: Any):
    if op == "$eq":
        if isinstance(arg, list):
            return _pending_exact([str(v) for v in arg])
        return User.pending_links.any(PendingTask.task_id == str(arg))
    if op == "$ne":
        return not_(User.pending_links.any(PendingTask.task_id == str(arg)))
    if op == "$in":
        return User.pending_links.any(PendingTask.task_id.in_([str(v) for v in _list_arg(op, arg)]))
    if op == "$nin":
        return not_(User.pending_links.any(PendingTask.task_id.in_([str(v) for v in _list_arg(op, arg)])))
    if op == "$all":
        return and_(true(), *[User.pending_links.any(PendingTask.task_id == str(v)) for v in _list_arg(op, arg)])
    if op == "$size":
        if not isinstance(arg, int) or isinstance(arg, bool) or arg < 0:
            raise ValidationError("$size in where parameter expects a non-negative integer")
        return _pending_count() == arg
    if op == "$exists":
        return true() if arg else false()
    raise ValidationError(f"Unsupported operator for pendingTasks: {op}")


def _pending_count():
    return (
        sa_select(func.count(PendingTask.task_id))
        .where(PendingTask.user_id == User.id)
        .scalar_subquery()
    )


def _pending_exact(task_ids: list):
    # order is not meaningful, so an array match compares as a set
    unique = set(task_ids)
    return and_(
        _pending_count() == len(unique),
        *[User.pending_links.any(PendingTask.task_id == t) for t in unique],
    )


# ---- sort ----

def build_order(sort: Optional[dict], fields: dict) -> list:
    if not sort:
        return []
    order = []
    for key, direction in sort.items():
        column = fields.get(key)
        if column is None or column is PENDING_TASKS:
            raise ValidationError(f"Cannot sort by {key}")
        if direction in (1, "1", "asc", "ascending"):
            order.append(column.asc())
        elif direction in (-1, "-1", "desc", "descending"):
            order.append(column.desc())
        else:
            raise ValidationError(f"Invalid sort direction for {key}")
    return order
