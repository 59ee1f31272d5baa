"""
Backend-independent filter expressions.

A filter is a tree of small frozen clause objects. `to_mongo` compiles it into
a MongoDB filter document and `matches` evaluates it against a plain dict, so
the same expression drives the MongoDB store and the in-memory store.

Field names may be dotted ("meta.rating") to reach into sub-documents.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple, Union

ASCENDING = 1
DESCENDING = -1


@dataclass(frozen=True)
class Eq:
    field: str
    value: Any


@dataclass(frozen=True)
class Exists:
    """Field is present and not null."""
    field: str


@dataclass(frozen=True)
class TextSearch:
    """Every whitespace-separated term must occur in at least one of the fields."""
    fields: Tuple[str, ...]
    text: str

    @property
    def terms(self) -> Tuple[str, ...]:
        return tuple(self.text.split())


@dataclass(frozen=True)
class TermsIn:
    """Membership test: the field (scalar or list) holds at least one of the ids."""
    field: str
    ids: Tuple[int, ...]


@dataclass(frozen=True)
class DecimalEquals:
    field: str
    value: float
    places: int = 1


@dataclass(frozen=True)
class DecimalBetween:
    """Inclusive range over the value rounded to `places` decimals."""
    field: str
    low: float
    high: float
    places: int = 1


@dataclass(frozen=True)
class And:
    clauses: Tuple["Clause", ...]


Clause = Union[Eq, Exists, TextSearch, TermsIn, DecimalEquals, DecimalBetween, And]


@dataclass(frozen=True)
class Query:
    where: Optional[Clause] = None
    sort: Tuple[Tuple[str, int], ...] = ()
    page: int = 1
    per_page: Optional[int] = None

    @property
    def skip(self) -> int:
        if not self.per_page:
            return 0
        return (max(self.page, 1) - 1) * self.per_page


def all_of(*clauses: Optional[Clause]) -> Optional[Clause]:
    """Combine clauses with AND, ignoring None; a single clause is returned as is."""
    present = tuple(c for c in clauses if c is not None)
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return And(present)


# -------------------- MongoDB --------------------

def _rounded(field_name: str, places: int) -> Dict[str, Any]:
    return {"$round": ["$" + field_name, places]}


def to_mongo(clause: Optional[Clause]) -> Dict[str, Any]:
    if clause is None:
        return {}
    if isinstance(clause, Eq):
        return {clause.field: clause.value}
    if isinstance(clause, Exists):
        return {clause.field: {"$exists": True, "$ne": None}}
    if isinstance(clause, TextSearch):
        per_term = [
            {"$or": [{f: {"$regex": re.escape(term), "$options": "i"}} for f in clause.fields]}
            for term in clause.terms
        ]
        if not per_term:
            return {}
        return per_term[0] if len(per_term) == 1 else {"$and": per_term}
    if isinstance(clause, TermsIn):
        return {clause.field: {"$in": list(clause.ids)}}
    if isinstance(clause, DecimalEquals):
        return {"$expr": {"$eq": [_rounded(clause.field, clause.places), clause.value]}}
    if isinstance(clause, DecimalBetween):
        rounded = _rounded(clause.field, clause.places)
        return {"$expr": {"$and": [{"$gte": [rounded, clause.low]}, {"$lte": [rounded, clause.high]}]}}
    if isinstance(clause, And):
        parts = [doc for doc in (to_mongo(c) for c in clause.clauses) if doc]
        if not parts:
            return {}
        return parts[0] if len(parts) == 1 else {"$and": parts}
    raise TypeError(f"Unsupported clause: {clause!r}")


# -------------------- In-memory --------------------

_MISSING = object()


def lookup(doc: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted path, returning _MISSING when any segment is absent."""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _values(value: Any) -> Sequence[Any]:
    return value if isinstance(value, list) else [value]


def matches(clause: Optional[Clause], doc: Dict[str, Any]) -> bool:
    if clause is None:
        return True
    if isinstance(clause, Eq):
        value = lookup(doc, clause.field)
        return value is not _MISSING and clause.value in _values(value)
    if isinstance(clause, Exists):
        value = lookup(doc, clause.field)
        return value is not _MISSING and value is not None
    if isinstance(clause, TextSearch):
        haystacks = []
        for f in clause.fields:
            value = lookup(doc, f)
            if value is not _MISSING and value is not None:
                haystacks.append(str(value).lower())
        return all(any(term.lower() in h for h in haystacks) for term in clause.terms)
    if isinstance(clause, TermsIn):
        value = lookup(doc, clause.field)
        if value is _MISSING:
            return False
        return any(v in clause.ids for v in _values(value))
    if isinstance(clause, DecimalEquals):
        value = lookup(doc, clause.field)
        return _is_number(value) and round(value, clause.places) == clause.value
    if isinstance(clause, DecimalBetween):
        value = lookup(doc, clause.field)
        return _is_number(value) and clause.low <= round(value, clause.places) <= clause.high
    if isinstance(clause, And):
        return all(matches(c, doc) for c in clause.clauses)
    raise TypeError(f"Unsupported clause: {clause!r}")


def sort_key(doc: Dict[str, Any], path: str) -> Tuple[bool, Any]:
    value = lookup(doc, path)
    if value is _MISSING or value is None:
        return (False, 0)
    return (True, value)
