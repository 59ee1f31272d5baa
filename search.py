"""
Review search and listing.

Request parameters are validated and normalized by `SearchParams`, turned into
a `query.Query` by `build_search_query`, run against the store and shaped into
the listing envelope by `search_reviews`. Invalid parameters reject the whole
request before any query runs.
"""
import math
import os
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from database import Store
from query import (
    DESCENDING,
    And,
    Clause,
    DecimalBetween,
    DecimalEquals,
    Eq,
    Exists,
    Query,
    TermsIn,
    TextSearch,
    all_of,
)
from sanitize import parse_id_list, sanitize_id_list, sanitize_text
from schemas import POSTS, PRODUCT_TYPE, REVIEW_TYPE

SITE_URL = os.getenv("SITE_URL", "http://localhost:8000").rstrip("/")
DATE_FORMAT = os.getenv("DATE_FORMAT", "%B %d, %Y")

DEFAULT_POSTS_PER_PAGE = 9
DEFAULT_PAGE = 1
RATING_FIELD = "meta.rating"
SEARCH_FIELDS = ("title", "content")
NEWEST_FIRST = (("date", DESCENDING), ("id", DESCENDING))

_ID_TOKEN = re.compile(r"^\d+$")
_DECIMAL = re.compile(r"^\d+(\.\d+)?$")

logger = structlog.get_logger(__name__)

RatingFilter = Union[float, Tuple[float, float]]


class InvalidSearchParams(Exception):
    def __init__(self, errors: Dict[str, str]):
        super().__init__("Invalid parameter(s): " + ", ".join(sorted(errors)))
        self.errors = errors


def parse_rating(value: str) -> RatingFilter:
    """Parse "4.5" or "3-5" into a value or an inclusive (min, max) pair."""
    if _DECIMAL.match(value):
        rating = float(value)
        if 0 <= rating <= 5:
            return rating
        raise ValueError("rating must be between 0 and 5")
    parts = value.split("-")
    if len(parts) == 2 and all(_DECIMAL.match(p) for p in parts):
        low, high = float(parts[0]), float(parts[1])
        if 0 <= low <= high <= 5:
            return low, high
    raise ValueError("rating must be a value or a min-max range between 0 and 5")


def format_rating(rating: RatingFilter) -> str:
    if isinstance(rating, tuple):
        return "%.1f-%.1f" % rating
    return "%.1f" % rating


class SearchParams(BaseModel):
    q: Optional[str] = Field(None, max_length=255, description="Search query")
    categories: Optional[str] = Field(None, description="Comma-separated category IDs")
    tags: Optional[str] = Field(None, description="Comma-separated tag IDs")
    page_no: int = Field(DEFAULT_PAGE, gt=0, description="Page number")
    posts_per_page: int = Field(DEFAULT_POSTS_PER_PAGE, gt=0, description="Posts per page")
    rating: Optional[str] = Field(None, description="Rating value or range (e.g., 4.5 or 3.0-5.0)")

    @field_validator("q")
    @classmethod
    def _clean_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return sanitize_text(value) or None

    @field_validator("categories", "tags")
    @classmethod
    def _clean_ids(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        if not all(_ID_TOKEN.match(token) for token in value.split(",")):
            raise ValueError("must be a comma-separated list of IDs")
        return sanitize_id_list(value) or None

    @field_validator("rating")
    @classmethod
    def _clean_rating(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        return format_rating(parse_rating(value))

    @property
    def category_ids(self) -> List[int]:
        return parse_id_list(self.categories) if self.categories else []

    @property
    def tag_ids(self) -> List[int]:
        return parse_id_list(self.tags) if self.tags else []


def parse_search_params(raw: Mapping[str, Any]) -> SearchParams:
    known = {name: raw[name] for name in SearchParams.model_fields if name in raw}
    try:
        return SearchParams.model_validate(known)
    except ValidationError as e:
        errors = {}
        for error in e.errors():
            name = str(error["loc"][0]) if error["loc"] else "request"
            errors.setdefault(name, error["msg"])
        raise InvalidSearchParams(errors)


def rating_clause(rating: str) -> Clause:
    parsed = parse_rating(rating)
    if isinstance(parsed, tuple):
        match = DecimalBetween(RATING_FIELD, parsed[0], parsed[1])
    else:
        match = DecimalEquals(RATING_FIELD, parsed)
    return And((Exists(RATING_FIELD), match))


def taxonomy_clause(category_ids: List[int], tag_ids: List[int]) -> Optional[Clause]:
    return all_of(
        TermsIn("categories", tuple(category_ids)) if category_ids else None,
        TermsIn("tags", tuple(tag_ids)) if tag_ids else None,
    )


def published(post_type: str) -> Clause:
    return And((Eq("type", post_type), Eq("status", "publish")))


def build_search_query(params: SearchParams) -> Query:
    where = all_of(
        published(REVIEW_TYPE),
        TextSearch(SEARCH_FIELDS, params.q) if params.q else None,
        taxonomy_clause(params.category_ids, params.tag_ids),
        rating_clause(params.rating) if params.rating else None,
    )
    return Query(where=where, sort=NEWEST_FIRST, page=params.page_no, per_page=params.posts_per_page)


# -------------------- Formatting --------------------

def permalink(doc: Dict[str, Any]) -> str:
    base = "products" if doc.get("type") == PRODUCT_TYPE else "product-reviews"
    return f"{SITE_URL}/{base}/{doc.get('slug') or doc['id']}/"


def format_date(value: Any) -> str:
    return value.strftime(DATE_FORMAT) if value else ""


def page_count(total_posts: int, posts_per_page: int) -> int:
    return math.ceil(total_posts / posts_per_page) if posts_per_page > 0 else 0


def resolve_product(store: Store, product_id: Any, cache: Optional[Dict[int, Any]] = None) -> Tuple[Optional[str], str]:
    """Title and URL of a published product; (None, "#") when it can't be resolved."""
    if isinstance(product_id, bool) or not isinstance(product_id, int) or product_id <= 0:
        return None, "#"
    cache = {} if cache is None else cache
    if product_id not in cache:
        cache[product_id] = store.get_document(POSTS, product_id)
    product = cache[product_id]
    if not product or product.get("type") != PRODUCT_TYPE or product.get("status") != "publish":
        return None, "#"
    return product.get("title"), permalink(product)


def format_review(store: Store, doc: Dict[str, Any], product_cache: Optional[Dict[int, Any]] = None) -> Dict[str, Any]:
    meta = doc.get("meta") or {}
    rating = meta.get("rating")
    product_title, product_url = resolve_product(store, meta.get("product_id"), product_cache)
    reviewer_name = meta.get("reviewer_name")
    return {
        "id": doc["id"],
        "title": doc.get("title", ""),
        "content": doc.get("content", ""),
        "date": format_date(doc.get("date")),
        "permalink": permalink(doc),
        "thumbnail": doc.get("thumbnail") or "",
        "rating": float(rating) if isinstance(rating, (int, float)) and not isinstance(rating, bool) else None,
        "product": product_title,
        "product_url": product_url,
        "reviewer": sanitize_text(reviewer_name) if reviewer_name else "",
    }


def search_reviews(store: Store, params: SearchParams) -> Dict[str, Any]:
    query = build_search_query(params)
    docs = store.get_documents(POSTS, query.where, sort=query.sort, skip=query.skip, limit=query.per_page)
    total = store.count_documents(POSTS, query.where)
    product_cache: Dict[int, Any] = {}
    logger.debug(
        "Review search",
        q=params.q,
        categories=params.categories,
        tags=params.tags,
        rating=params.rating,
        page_no=params.page_no,
        total=total,
    )
    return {
        "posts": [format_review(store, doc, product_cache) for doc in docs],
        "posts_per_page": params.posts_per_page,
        "total_posts": total,
        "no_of_pages": page_count(total, params.posts_per_page),
    }
