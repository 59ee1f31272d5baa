"""
Review and product records: creation, editing and deletion.
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from database import Store
from meta_fields import apply_meta
from query import ASCENDING, And, Eq
from schemas import POSTS, PRODUCT_TYPE, REVIEW_TYPE, Product, Review

logger = structlog.get_logger(__name__)

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(title: str) -> str:
    return _NON_SLUG.sub("-", title.lower()).strip("-") or "post"


def unique_slug(store: Store, post_type: str, title: str, exclude_id: Optional[int] = None) -> str:
    """Slug for `title`, suffixed -2, -3, ... when another post of the type already uses it."""
    base = slugify(title)
    slug, n = base, 1
    while True:
        taken = [
            doc for doc in store.get_documents(POSTS, And((Eq("type", post_type), Eq("slug", slug))))
            if doc["id"] != exclude_id
        ]
        if not taken:
            return slug
        n += 1
        slug = f"{base}-{n}"


def get_post(store: Store, post_type: str, post_id: int) -> Optional[Dict[str, Any]]:
    doc = store.get_document(POSTS, post_id)
    if doc is None or doc.get("type") != post_type:
        return None
    return doc


# -------------------- Reviews --------------------

def create_review(store: Store, user: dict, fields: Dict[str, Any], meta: Dict[str, Any]) -> int:
    data = {k: v for k, v in fields.items() if v is not None}
    data["slug"] = unique_slug(store, REVIEW_TYPE, data["title"])
    data["author_id"] = user.get("id")
    data["meta"] = apply_meta(user, None, meta)
    review = Review(**data)
    review_id = store.create_document(POSTS, review)
    logger.info("Review created", review_id=review_id, user_id=user.get("id"))
    return review_id


def update_review(store: Store, user: dict, review: Dict[str, Any], fields: Dict[str, Any], meta: Dict[str, Any]) -> Dict[str, Any]:
    update = dict(fields)
    if "title" in update and update["title"] != review.get("title"):
        update["slug"] = unique_slug(store, REVIEW_TYPE, update["title"], exclude_id=review["id"])
    if meta:
        update["meta"] = apply_meta(user, review.get("meta"), meta)
    store.update_document(POSTS, review["id"], update)
    logger.info("Review updated", review_id=review["id"], fields=sorted(update), user_id=user.get("id"))
    return store.get_document(POSTS, review["id"])


def update_review_meta(store: Store, user: dict, review: Dict[str, Any], meta: Dict[str, Any]) -> Dict[str, Any]:
    merged = apply_meta(user, review.get("meta"), meta)
    store.update_document(POSTS, review["id"], {"meta": merged})
    logger.info("Review meta updated", review_id=review["id"], fields=sorted(meta), user_id=user.get("id"))
    return merged


def delete_review(store: Store, user: dict, review_id: int) -> bool:
    deleted = store.delete_document(POSTS, review_id)
    if deleted:
        logger.info("Review deleted", review_id=review_id, user_id=user.get("id"))
    return deleted


# -------------------- Products --------------------

def create_product(store: Store, title: str, status: str = "publish", date: Optional[datetime] = None) -> int:
    data = {"title": title, "status": status, "slug": unique_slug(store, PRODUCT_TYPE, title)}
    if date is not None:
        data["date"] = date
    product_id = store.create_document(POSTS, Product(**data))
    logger.info("Product created", product_id=product_id)
    return product_id


def list_products(store: Store) -> List[Dict[str, Any]]:
    """All products ordered by title, for the review editor's product dropdown."""
    docs = store.get_documents(POSTS, Eq("type", PRODUCT_TYPE), sort=(("title", ASCENDING),))
    return [{"id": doc["id"], "title": doc.get("title", ""), "status": doc.get("status")} for doc in docs]
