"""
Query feature pipeline for list endpoints.

Turns raw query-string parameters into a MongoDB query:

    features = APIFeatures(db["tours"], params, schema=Tour).filter().sort().limit_fields().paginate()
    docs = features.execute()

Stages only record state; nothing touches the database until `execute()`.
"""

import re
import types
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Sequence, Tuple, Type, Union, get_args, get_origin

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo.collection import Collection

from errors import AppError, CastError
from schemas import validate_object_id

EXCLUDED_FIELDS = ("page", "sort", "limit", "fields")
OPERATORS = ("gt", "gte", "lt", "lte")
DEFAULT_SORT = "-createdAt"
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 100
INTERNAL_FIELD = "__v"

_KEY_RE = re.compile(r"^(?P<field>[^\[\]]+)(?:\[(?P<op>[^\[\]]*)\])?$")


def collapse_query_params(items: Iterable[Tuple[str, str]], whitelist: Sequence[str] = ()) -> Dict[str, Any]:
    """Collapse repeated parameters: the last value wins unless the field is whitelisted,
    in which case every value is kept as a list."""
    params: Dict[str, Any] = {}
    for key, value in items:
        field = key.split("[", 1)[0]
        if key in params and field in whitelist and "[" not in key:
            existing = params[key]
            params[key] = (existing if isinstance(existing, list) else [existing]) + [value]
        else:
            params[key] = value
    return params


def _unwrap(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is Annotated:
        base, *metadata = get_args(annotation)
        if any(getattr(m, "func", None) is validate_object_id for m in metadata):
            return ObjectId
        return _unwrap(base)
    if origin is Union or origin is getattr(types, "UnionType", None):
        args = [a for a in get_args(annotation) if a is not type(None)]
        return _unwrap(args[0]) if len(args) == 1 else None
    if origin is list:
        return _unwrap(get_args(annotation)[0])
    if origin is Literal:
        return str
    return annotation


def field_type(schema: Optional[Type[BaseModel]], field: str) -> Any:
    if schema is None:
        return None
    for name, info in schema.model_fields.items():
        if field in (name, info.alias):
            if any(getattr(m, "func", None) is validate_object_id for m in info.metadata):
                return ObjectId
            return _unwrap(info.annotation)
    return None


def _to_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise ValueError(raw)


def _to_number(raw: str):
    try:
        return int(raw)
    except ValueError:
        return float(raw)


def _to_datetime(raw: str) -> datetime:
    value = datetime.fromisoformat(raw.strip())
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def cast_value(schema: Optional[Type[BaseModel]], field: str, raw: Any) -> Any:
    """Cast a query-string value to the stored type of `field`."""
    target = field_type(schema, field)
    if target is None or not isinstance(raw, str):
        return raw
    try:
        if target is bool:
            return _to_bool(raw)
        if target is int:
            return _to_number(raw)
        if target is float:
            return float(raw)
        if target is datetime:
            return _to_datetime(raw)
        if target is ObjectId:
            return ObjectId(raw)
    except (ValueError, TypeError, InvalidId):
        raise CastError(field, raw, getattr(target, "__name__", str(target)))
    return raw


def _positive_int(raw: Any, default: int) -> int:
    if isinstance(raw, list):
        raw = raw[-1]
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _last(value: Any) -> Any:
    return value[-1] if isinstance(value, list) else value


def _is_safe_field(field: str) -> bool:
    return bool(field) and not field.startswith("$") and "." not in field


class APIFeatures:
    def __init__(
        self,
        collection: Collection,
        query_params: Dict[str, Any],
        base_filter: Optional[Dict[str, Any]] = None,
        schema: Optional[Type[BaseModel]] = None,
        hidden_fields: Sequence[str] = (),
    ):
        self.collection = collection
        self.query_params = dict(query_params)
        self.schema = schema
        self.hidden_fields = tuple(hidden_fields)
        self.filters: Dict[str, Any] = dict(base_filter or {})
        self.sort_spec: List[Tuple[str, int]] = []
        self.projection: Optional[Dict[str, int]] = None
        self.skip = 0
        self.limit = 0

    def filter(self) -> "APIFeatures":
        conditions: Dict[str, Any] = {}
        for key, value in self.query_params.items():
            if key in EXCLUDED_FIELDS:
                continue
            match = _KEY_RE.match(key)
            if not match or not _is_safe_field(match.group("field")):
                continue
            field, op = match.group("field"), match.group("op")
            if op is None:
                if isinstance(value, list):
                    conditions[field] = {"$in": [cast_value(self.schema, field, v) for v in value]}
                else:
                    conditions[field] = cast_value(self.schema, field, value)
                continue
            if op not in OPERATORS:
                raise AppError(f"Invalid query operator: {op}", 400)
            condition = conditions.get(field)
            if not isinstance(condition, dict) or not all(k.startswith("$") for k in condition):
                condition = {}
            condition[f"${op}"] = cast_value(self.schema, field, _last(value))
            conditions[field] = condition

        if any(k in self.filters for k in conditions):
            self.filters = {"$and": [self.filters, conditions]}
        else:
            self.filters.update(conditions)
        return self

    def sort(self) -> "APIFeatures":
        raw = _last(self.query_params.get("sort")) or DEFAULT_SORT
        spec = []
        for part in str(raw).split(","):
            part = part.strip()
            direction = -1 if part.startswith("-") else 1
            field = part.lstrip("-+")
            if _is_safe_field(field):
                spec.append((field, direction))
        if not spec:
            spec = [("createdAt", -1)]
        if all(field != "_id" for field, _ in spec):
            spec.append(("_id", 1))
        self.sort_spec = spec
        return self

    def limit_fields(self) -> "APIFeatures":
        raw = _last(self.query_params.get("fields"))
        fields = [f.strip() for f in str(raw).split(",") if f.strip()] if raw else []
        included = [f for f in fields if not f.startswith("-") and _is_safe_field(f)]
        excluded = [f[1:] for f in fields if f.startswith("-") and _is_safe_field(f[1:])]

        if included and excluded:
            raise AppError("Field selection cannot mix inclusion and exclusion", 400)
        if included:
            projection = {f: 1 for f in included if f not in self.hidden_fields}
            self.projection = projection or {"_id": 1}
        else:
            projection = {f: 0 for f in (excluded or [INTERNAL_FIELD])}
            projection.update({f: 0 for f in self.hidden_fields})
            self.projection = projection
        return self

    def paginate(self) -> "APIFeatures":
        page = _positive_int(self.query_params.get("page"), DEFAULT_PAGE)
        limit = _positive_int(self.query_params.get("limit"), DEFAULT_LIMIT)
        self.skip = (page - 1) * limit
        self.limit = limit
        return self

    def execute(self) -> List[Dict[str, Any]]:
        cursor = self.collection.find(self.filters, self.projection)
        if self.sort_spec:
            cursor = cursor.sort(self.sort_spec)
        if self.skip:
            cursor = cursor.skip(self.skip)
        if self.limit:
            cursor = cursor.limit(self.limit)
        return list(cursor)
