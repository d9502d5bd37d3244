"""
List query builder

Every admin list (products, raw leather, messages, lead requests,
notifications) goes through run_list_query with its own ListSpec. Filter
values come straight from the query string; anything unrecognised is treated
as "no filter" rather than an error.
"""

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from pymongo import ASCENDING, DESCENDING

from database import to_object_id

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_PAGE = 100_000
MAX_LIMIT = 10_000
DEFAULT_SORT_FIELD = "createdAt"
UNFILTERED_SENTINELS = ("", "all")


class FieldKind(str, Enum):
    EXACT = "exact"
    SUBSTRING = "substring"
    BOOLEAN = "boolean"
    ARRAY_CONTAINS = "arrayContains"


@dataclass(frozen=True)
class FilterField:
    kind: FieldKind
    db_field: str
    choices: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class ListSpec:
    name: str
    fields: Mapping[str, FilterField]
    search_fields: Sequence[str] = ()
    sort_fields: frozenset = frozenset()
    archive_field: Optional[str] = None
    id_searchable: bool = False


@dataclass
class ListResult:
    items: List[dict]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> dict:
        return {
            "totalProducts": self.total,
            "currentPage": self.page,
            "page": self.page,
            "limit": self.limit,
            "totalPages": self.total_pages,
        }


def parse_bool(value) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def _contains(value: str) -> dict:
    return {"$regex": re.escape(value), "$options": "i"}


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    if value.lower() in UNFILTERED_SENTINELS:
        return None
    return value


def build_query(spec: ListSpec, params: Mapping[str, str]) -> dict:
    query: Dict[str, object] = {}

    for key, fdef in spec.fields.items():
        raw = params.get(key)
        if fdef.kind == FieldKind.BOOLEAN:
            flag = parse_bool(raw)
            if flag is not None:
                query[fdef.db_field] = flag
            continue

        value = _clean(raw)
        if value is None:
            continue
        if fdef.kind == FieldKind.EXACT:
            if fdef.choices and value not in fdef.choices:
                logger.debug("Ignoring %s=%r for %s: not an allowed value", key, value, spec.name)
                continue
            query[fdef.db_field] = value
        else:
            # a regex on an array field matches when any element matches
            query[fdef.db_field] = _contains(value)

    if spec.archive_field and spec.archive_field not in query:
        query[spec.archive_field] = {"$ne": True}

    search = str(params.get("search") or "").strip()
    if search and spec.search_fields:
        clauses = [{db_field: _contains(search)} for db_field in spec.search_fields]
        if spec.id_searchable:
            oid = to_object_id(search)
            if oid is not None:
                clauses.append({"_id": oid})
        query["$or"] = clauses

    return query


def build_sort(spec: ListSpec, sort_by: Optional[str], order: Optional[str]) -> List[Tuple[str, int]]:
    if sort_by and sort_by in spec.sort_fields:
        direction = ASCENDING if (order or "").lower() == "asc" else DESCENDING
        return [(sort_by, direction), ("_id", direction)]
    if sort_by:
        logger.warning(
            "Invalid or unallowed sortBy field for %s: %s. Defaulting to createdAt descending.",
            spec.name,
            sort_by,
        )
    return [(DEFAULT_SORT_FIELD, DESCENDING), ("_id", DESCENDING)]


def _positive_int(value, default: int, ceiling: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    if number < 1:
        return default
    # skip must fit in a BSON int64
    return min(number, ceiling)


def parse_pagination(page=None, limit=None) -> Tuple[int, int]:
    return _positive_int(page, DEFAULT_PAGE, MAX_PAGE), _positive_int(limit, DEFAULT_LIMIT, MAX_LIMIT)


def run_list_query(collection, spec: ListSpec, params: Mapping[str, str]) -> ListResult:
    query = build_query(spec, params)
    page, limit = parse_pagination(params.get("page"), params.get("limit"))
    sort = build_sort(spec, params.get("sortBy"), params.get("order"))
    skip = (page - 1) * limit

    total = collection.count_documents(query)
    items = list(collection.find(query).sort(sort).skip(skip).limit(limit))
    logger.info("Retrieved %d %s (total: %d)", len(items), spec.name, total)
    return ListResult(items=items, total=total, page=page, limit=limit)


def sort_allow_list(*names: str) -> frozenset:
    return frozenset(names) | {DEFAULT_SORT_FIELD, "updatedAt"}
