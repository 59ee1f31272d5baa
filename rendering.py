"""
Server-rendered review listing (the embeddable "product_reviews" tag).
"""
from typing import Any, Dict, Iterable, List, Optional

from jinja2 import DictLoader, Environment, select_autoescape

from database import Store
from sanitize import absint, sanitize_text
from schemas import POSTS, PRODUCT_TYPE, REVIEW_TYPE
from search import NEWEST_FIRST, page_count, permalink, published

REVIEWS_PER_PAGE = 5
FILLED_STAR = "★"
EMPTY_STAR = "☆"

LISTING_TEMPLATE = """\
<div class="prm-reviews" itemscope itemtype="http://schema.org/AggregateRating">
{%- if not has_posts %}
    <p>No product reviews found.</p>
{%- else %}
{%- for review in reviews %}
    <div class="prm-review" itemscope itemtype="http://schema.org/Review">
        <meta itemprop="author" content="{{ review.reviewer_name }}">
        <h3 itemprop="name">{{ review.title }}</h3>
        {%- if review.product %}
        <p>
            <strong>Product:</strong>
            <a href="{{ review.product.url }}" itemprop="itemReviewed" itemscope itemtype="http://schema.org/Product">{{ review.product.title }}</a>
        </p>
        {%- endif %}
        <p itemprop="reviewRating" itemscope itemtype="http://schema.org/Rating">
            <meta itemprop="ratingValue" content="{{ review.rating }}">
            <strong>Rating:</strong>
            {{ review.stars }}
        </p>
        <div itemprop="description">{{ review.content }}</div>
        <p>
            <strong>Reviewer:</strong>
            {{ review.reviewer_name }}
        </p>
    </div>
{%- endfor %}
    <meta itemprop="ratingValue" content="{{ average }}">
    <meta itemprop="reviewCount" content="{{ total }}">
    {%- if pages > 1 %}
    <div class="prm-pagination">
        {%- for link in links %}
        {%- if link.kind == "current" %}
        <span aria-current="page" class="page-numbers current">{{ link.number }}</span>
        {%- elif link.kind == "dots" %}
        <span class="page-numbers dots">&hellip;</span>
        {%- else %}
        <a class="{{ link.kind }} page-numbers" href="?paged={{ link.number }}">{{ link.label }}</a>
        {%- endif %}
        {%- endfor %}
    </div>
    {%- endif %}
{%- endif %}
</div>
"""

env = Environment(
    loader=DictLoader({"product_reviews.html": LISTING_TEMPLATE}),
    autoescape=select_autoescape(["html"]),
)


def average_rating(ratings: Iterable[float]) -> float:
    ratings = list(ratings)
    return round(sum(ratings) / len(ratings), 1) if ratings else 0.0


def star_rating(rating: int) -> str:
    rating = min(max(int(rating), 0), 5)
    return FILLED_STAR * rating + EMPTY_STAR * (5 - rating)


def review_display_data(store: Store, doc: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Display fields of a review, or None when it lacks a reviewer or a 1-5 rating."""
    meta = doc.get("meta") or {}
    product_id = absint(meta.get("product_id"))
    rating = absint(meta.get("rating"))
    reviewer_name = sanitize_text(meta.get("reviewer_name"))

    if not reviewer_name or rating < 1 or rating > 5:
        return None

    product = None
    if product_id:
        product_doc = store.get_document(POSTS, product_id)
        if product_doc and product_doc.get("type") == PRODUCT_TYPE:
            product = {"id": product_id, "title": product_doc.get("title", ""), "url": permalink(product_doc)}

    return {
        "id": doc["id"],
        "title": doc.get("title", ""),
        "content": doc.get("content", ""),
        "product": product,
        "rating": rating,
        "stars": star_rating(rating),
        "reviewer_name": reviewer_name,
    }


def page_links(current: int, total: int, end_size: int = 1, mid_size: int = 2) -> List[Dict[str, Any]]:
    """Previous/numbered/next links, eliding runs of far-away pages."""
    links: List[Dict[str, Any]] = []
    if current > 1:
        links.append({"kind": "prev", "number": current - 1, "label": "« Previous"})
    dots = False
    for n in range(1, total + 1):
        if n == current:
            links.append({"kind": "current", "number": n, "label": str(n)})
            dots = True
        elif n <= end_size or current - mid_size <= n <= current + mid_size or n > total - end_size:
            links.append({"kind": "page", "number": n, "label": str(n)})
            dots = True
        elif dots:
            links.append({"kind": "dots", "number": None, "label": "…"})
            dots = False
    if current < total:
        links.append({"kind": "next", "number": current + 1, "label": "Next »"})
    return links


def render_review_listing(store: Store, paged: int = 1) -> str:
    paged = max(1, paged)
    where = published(REVIEW_TYPE)
    docs = store.get_documents(
        POSTS,
        where,
        sort=NEWEST_FIRST,
        skip=(paged - 1) * REVIEWS_PER_PAGE,
        limit=REVIEWS_PER_PAGE,
    )
    total = store.count_documents(POSTS, where)

    reviews = [r for r in (review_display_data(store, doc) for doc in docs) if r is not None]
    pages = page_count(total, REVIEWS_PER_PAGE)

    return env.get_template("product_reviews.html").render(
        has_posts=bool(docs),
        reviews=reviews,
        total=total,
        average=average_rating(r["rating"] for r in reviews),
        pages=pages,
        links=page_links(paged, pages),
    )
