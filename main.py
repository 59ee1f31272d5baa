import os
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from fastapi import Body, Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, EmailStr, Field, PositiveInt, field_validator

from admin_page import render_settings_page
from auth import (
    create_access_token,
    get_current_user,
    hash_password,
    public_user,
    require_capability,
    verify_password,
)
from content import (
    create_product,
    create_review,
    delete_review,
    get_post,
    list_products,
    update_review,
    update_review_meta,
)
from database import Store, get_store
from logging_config import add_context, clear_context, configure_logging
from meta_fields import MetaError
from options import SettingsError, get_settings, settings_schema, update_settings
from query import Eq
from rendering import render_review_listing
from sanitize import absint
from schemas import REVIEW_TYPE, USERS, PostStatus, Role, User as UserSchema, as_utc
from search import SITE_URL, InvalidSearchParams, format_review, parse_search_params, search_reviews

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "/tmp/product-review-uploads")
MAX_UPLOAD_BYTES = 5 * 1024 * 1024
# review fields an update may set back to null
CLEARABLE_FIELDS = {"thumbnail"}

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    Path(UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
    logger.info("Product Review Manager API started", upload_dir=UPLOAD_DIR)
    yield


app = FastAPI(title="Product Review Manager API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR, check_dir=False), name="uploads")


@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    clear_context()
    add_context(method=request.method, path=request.url.path)
    return await call_next(request)


# -------------------- Models --------------------
class SignupRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RoleUpdate(BaseModel):
    role: Role


class ProductCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    status: PostStatus = "publish"


class ReviewCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field("", max_length=20000)
    status: PostStatus = "publish"
    date: Optional[datetime] = None
    thumbnail: Optional[str] = Field(None, max_length=2048)
    categories: List[PositiveInt] = Field(default_factory=list)
    tags: List[PositiveInt] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("date")
    @classmethod
    def _utc_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class ReviewUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, max_length=20000)
    status: Optional[PostStatus] = None
    date: Optional[datetime] = None
    thumbnail: Optional[str] = Field(None, max_length=2048)
    categories: Optional[List[PositiveInt]] = None
    tags: Optional[List[PositiveInt]] = None
    meta: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("date")
    @classmethod
    def _utc_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


# -------------------- Helpers --------------------

def meta_error(e: MetaError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail={"code": e.code, "message": e.message, "field": e.field})


def settings_error(e: SettingsError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.detail())


def review_or_404(store: Store, review_id: int) -> dict:
    review = get_post(store, REVIEW_TYPE, review_id)
    if not review:
        raise HTTPException(status_code=404, detail="Not found")
    return review


# -------------------- Health --------------------
@app.get("/")
def root():
    return {"name": "Product Review Manager API", "status": "ok"}


@app.get("/health")
def health(store: Store = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "storage": "❌ Not Available",
        "connection_status": "Not Connected",
    }
    try:
        response.update(store.describe())
        response["storage"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("Storage health check failed", error=str(e))
        response["storage"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


# -------------------- Auth --------------------
@app.post("/api/auth/signup", response_model=TokenResponse)
def signup(payload: SignupRequest, store: Store = Depends(get_store)):
    if store.get_documents(USERS, Eq("email", payload.email), limit=1):
        raise HTTPException(status_code=400, detail="Email already registered")
    # the first account administers the site
    role = "administrator" if store.count_documents(USERS) == 0 else "subscriber"
    user = UserSchema(
        username=payload.username,
        email=payload.email,
        password_hash=hash_password(payload.password),
        role=role,
    )
    user_id = store.create_document(USERS, user)
    logger.info("User registered", user_id=user_id, role=role)
    return TokenResponse(access_token=create_access_token(user_id))


@app.post("/api/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, store: Store = Depends(get_store)):
    users = store.get_documents(USERS, Eq("email", payload.email), limit=1)
    if not users or not verify_password(payload.password, users[0].get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenResponse(access_token=create_access_token(users[0]["id"]))


@app.get("/api/auth/me")
def me(current_user=Depends(get_current_user)):
    return public_user(current_user)


@app.put("/api/users/{user_id}/role")
def set_user_role(
    user_id: int,
    payload: RoleUpdate,
    store: Store = Depends(get_store),
    current_user=Depends(require_capability("manage_options")),
):
    if not store.update_document(USERS, user_id, {"role": payload.role}):
        raise HTTPException(status_code=404, detail="Not found")
    logger.info("User role changed", user_id=user_id, role=payload.role, changed_by=current_user["id"])
    return public_user(store.get_document(USERS, user_id))


# -------------------- Reviews --------------------
@app.get("/api/reviews")
def list_reviews(request: Request, store: Store = Depends(get_store)):
    try:
        params = parse_search_params(request.query_params)
    except InvalidSearchParams as e:
        logger.info("Rejected review search", errors=e.errors)
        raise HTTPException(
            status_code=400,
            detail={"code": "rest_invalid_param", "message": str(e), "params": e.errors},
        )
    return search_reviews(store, params)


@app.get("/api/reviews/{review_id}")
def get_review(review_id: int, store: Store = Depends(get_store)):
    review = review_or_404(store, review_id)
    if review.get("status") != "publish":
        raise HTTPException(status_code=404, detail="Not found")
    return format_review(store, review)


@app.post("/api/reviews", status_code=201)
def add_review(
    payload: ReviewCreate,
    store: Store = Depends(get_store),
    current_user=Depends(require_capability("edit_posts")),
):
    fields = payload.model_dump(exclude={"meta"})
    try:
        review_id = create_review(store, current_user, fields, payload.meta)
    except MetaError as e:
        raise meta_error(e)
    return {"id": review_id}


@app.put("/api/reviews/{review_id}")
def edit_review(
    review_id: int,
    payload: ReviewUpdate,
    store: Store = Depends(get_store),
    current_user=Depends(require_capability("edit_posts")),
):
    review = review_or_404(store, review_id)
    fields = {
        k: v
        for k, v in payload.model_dump(exclude={"meta"}, exclude_unset=True).items()
        if v is not None or k in CLEARABLE_FIELDS
    }
    try:
        updated = update_review(store, current_user, review, fields, payload.meta)
    except MetaError as e:
        raise meta_error(e)
    return {"status": "ok", "id": updated["id"], "slug": updated.get("slug")}


@app.delete("/api/reviews/{review_id}")
def remove_review(
    review_id: int,
    store: Store = Depends(get_store),
    current_user=Depends(require_capability("edit_posts")),
):
    review_or_404(store, review_id)
    delete_review(store, current_user, review_id)
    return {"status": "ok"}


@app.get("/api/reviews/{review_id}/meta")
def get_review_meta(
    review_id: int,
    store: Store = Depends(get_store),
    current_user=Depends(require_capability("edit_posts")),
):
    return review_or_404(store, review_id).get("meta") or {}


@app.patch("/api/reviews/{review_id}/meta")
def patch_review_meta(
    review_id: int,
    payload: Dict[str, Any] = Body(...),
    store: Store = Depends(get_store),
    current_user=Depends(require_capability("edit_posts")),
):
    review = review_or_404(store, review_id)
    try:
        return update_review_meta(store, current_user, review, payload)
    except MetaError as e:
        raise meta_error(e)


# -------------------- Products --------------------
@app.get("/api/products")
def products(store: Store = Depends(get_store)):
    return {"items": list_products(store)}


@app.post("/api/products", status_code=201)
def add_product(
    payload: ProductCreate,
    store: Store = Depends(get_store),
    current_user=Depends(require_capability("edit_posts")),
):
    return {"id": create_product(store, payload.title, payload.status)}


# -------------------- Settings --------------------
@app.get("/api/settings")
def read_settings(
    store: Store = Depends(get_store),
    current_user=Depends(require_capability("manage_options")),
):
    try:
        return get_settings(store)
    except SettingsError as e:
        raise settings_error(e)


@app.get("/api/settings/schema")
def read_settings_schema(current_user=Depends(require_capability("manage_options"))):
    return settings_schema()


@app.api_route("/api/settings", methods=["PUT", "PATCH"])
def write_settings(
    payload: Any = Body(...),
    store: Store = Depends(get_store),
    current_user=Depends(require_capability("manage_options")),
):
    try:
        return update_settings(store, payload)
    except SettingsError as e:
        logger.info("Rejected settings update", code=e.code, errors=e.errors)
        raise settings_error(e)


@app.get("/admin/settings", response_class=HTMLResponse)
def settings_page():
    return render_settings_page(settings_url="/api/settings", login_url="/api/auth/login")


# -------------------- Embeds --------------------
@app.get("/embed/product-reviews", response_class=HTMLResponse)
def product_reviews_embed(paged: str = "1", store: Store = Depends(get_store)):
    return render_review_listing(store, absint(paged) or 1)


# -------------------- Uploads --------------------
_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")


@app.post("/api/uploads")
async def upload_image(
    file: UploadFile = File(...),
    current_user=Depends(require_capability("edit_posts")),
):
    if not (file.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image uploads are allowed")
    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="Max file size 5MB")
    safe_name = _UNSAFE_FILENAME.sub("-", os.path.basename(file.filename or "upload"))
    filename = f"{datetime.now(timezone.utc).timestamp()}_{safe_name}"
    Path(UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
    with open(Path(UPLOAD_DIR) / filename, "wb") as f:
        f.write(content)
    logger.info("Image uploaded", filename=filename, size=len(content), user_id=current_user["id"])
    return {"url": f"{SITE_URL}/uploads/{filename}"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
