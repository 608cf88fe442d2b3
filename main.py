import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from database import Database, get_db
from errors import EmailTaken, MarketplaceError, Unauthorized
from observability import setup_logging
from products import ProductService
from reviews import ReviewService
from schemas import Dimensions, Guest, User as UserSchema, strip_text
from security import (
    create_access_token,
    get_current_user,
    get_review_actor,
    hash_password,
    public_user,
    verify_password,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(config.LOG_LEVEL, config.LOG_FORMAT)
    db = Database.connect(config.DATABASE_URL, config.DATABASE_NAME)
    # review uniqueness depends on these indexes; refuse to serve without them
    try:
        await db.ensure_indexes()
    except PyMongoError as e:
        logger.critical("Could not ensure indexes, aborting startup: %s", e)
        await db.close()
        raise
    app.state.db = db
    logger.info("Marketplace API started (review mode: %s)", config.REVIEW_MODE)
    yield
    await db.close()


# App and CORS
app = FastAPI(title="Marketplace API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# Error handlers
@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    logger.warning(exc.message, extra={"error_code": exc.code, "path": request.url.path})
    return JSONResponse(status_code=exc.http_status, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid request data",
            "code": "VALIDATION_ERROR",
            "errors": [
                {"field": ".".join(str(loc) for loc in e["loc"]), "message": e["msg"]}
                for e in exc.errors()
            ],
        },
    )


def _internal_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=exc, extra={"path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected error occurred", "code": "INTERNAL_ERROR"},
    )


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    return _internal_error(request, exc)


@app.exception_handler(Exception)
async def generic_error_handler(request: Request, exc: Exception):
    return _internal_error(request, exc)


# Services
def get_product_service(db: Database = Depends(get_db)) -> ProductService:
    return ProductService(db)


def get_review_service(db: Database = Depends(get_db)) -> ReviewService:
    return ReviewService(db, mode=config.REVIEW_MODE)


# Request/Response Models
class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    password: str

    normalize_name = field_validator("name", mode="before")(strip_text)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


class ProductCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0, allow_inf_nan=False)
    category: str = Field(..., min_length=1)
    image_url: Optional[str] = Field(None, alias="imageUrl")
    discount_percentage: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    rating: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    stock: Optional[int] = Field(None, ge=0)
    tags: List[str] = Field(default_factory=list)
    brand: Optional[str] = None
    sku: Optional[str] = None
    weight: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    dimensions: Optional[Dimensions] = None
    warranty_information: Optional[str] = None
    shipping_information: Optional[str] = None
    availability_status: Optional[str] = None
    return_policy: Optional[str] = None
    minimum_order_quantity: Optional[int] = Field(None, ge=0)
    images: List[str] = Field(default_factory=list)
    thumbnail: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    normalize_required = field_validator("title", "category", mode="before")(strip_text)


class ProductUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    category: Optional[str] = Field(None, min_length=1)
    discount_percentage: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    rating: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    stock: Optional[int] = Field(None, ge=0)
    tags: Optional[List[str]] = None
    brand: Optional[str] = None
    sku: Optional[str] = None
    weight: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    dimensions: Optional[Dimensions] = None
    warranty_information: Optional[str] = None
    shipping_information: Optional[str] = None
    availability_status: Optional[str] = None
    return_policy: Optional[str] = None
    minimum_order_quantity: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None
    thumbnail: Optional[str] = None

    @field_validator("title", "price", "category", mode="before")
    @classmethod
    def required_not_null(cls, v):
        if v is None:
            raise ValueError("field cannot be removed")
        return strip_text(v)


class ReviewCreateRequest(BaseModel):
    # rating is checked by the review rules so non-numeric input gets INVALID_RATING
    rating: Optional[Any] = None
    comment: Optional[str] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")
    guest: Optional[Guest] = None
    origin: Optional[Literal["user", "guest"]] = None

    model_config = ConfigDict(populate_by_name=True)


class ReviewUpdateRequest(BaseModel):
    rating: Optional[Any] = None
    comment: Optional[str] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")

    model_config = ConfigDict(populate_by_name=True)


# Auth Routes
@app.post("/auth/signup", response_model=TokenResponse, status_code=201)
async def signup(payload: SignupRequest, db: Database = Depends(get_db)):
    if await db.users.find_one({"email": payload.email.lower()}):
        raise EmailTaken()
    user_doc = UserSchema(
        name=payload.name,
        email=payload.email.lower(),
        password_hash=hash_password(payload.password),
    ).model_dump()
    try:
        created = await db.users.create(user_doc)
    except DuplicateKeyError:
        raise EmailTaken()
    user = public_user(created)
    logger.info("User signed up", extra={"user_id": user["id"]})
    token = create_access_token({"sub": user["id"], "email": user["email"], "name": user["name"]})
    return TokenResponse(access_token=token, user=user)


@app.post("/auth/login", response_model=TokenResponse)
async def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = await db.users.find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise Unauthorized("Invalid email or password")
    u = public_user(user)
    token = create_access_token({"sub": u["id"], "email": u["email"], "name": u["name"]})
    return TokenResponse(access_token=token, user=u)


@app.get("/auth/verify")
async def verify(current_user=Depends(get_current_user)):
    return current_user


# Product Routes
@app.get("/products")
async def list_products(
    category: Optional[str] = None,
    q: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    sort: Optional[str] = Query("newest"),
    products: ProductService = Depends(get_product_service),
):
    return await products.list(category=category, q=q, min_price=min_price, max_price=max_price, sort=sort)


@app.get("/products/categories")
async def list_categories(products: ProductService = Depends(get_product_service)):
    return await products.categories()


@app.get("/products/{product_id}")
async def get_product(product_id: str, products: ProductService = Depends(get_product_service)):
    return await products.get(product_id)


@app.post("/products", status_code=201)
async def create_product(
    payload: ProductCreateRequest,
    current_user=Depends(get_current_user),
    products: ProductService = Depends(get_product_service),
):
    return await products.create(current_user, payload.model_dump(exclude_none=True))


@app.patch("/products/{product_id}")
async def update_product(
    product_id: str,
    payload: ProductUpdateRequest,
    current_user=Depends(get_current_user),
    products: ProductService = Depends(get_product_service),
):
    return await products.update(current_user, product_id, payload.model_dump(exclude_unset=True))


@app.delete("/products/{product_id}")
async def delete_product(
    product_id: str,
    current_user=Depends(get_current_user),
    products: ProductService = Depends(get_product_service),
):
    await products.delete(current_user, product_id)
    return {"message": "Product deleted"}


# Review Routes
@app.get("/products/{product_id}/reviews")
async def list_reviews(product_id: str, reviews: ReviewService = Depends(get_review_service)):
    return await reviews.list_for_product(product_id)


@app.post("/products/{product_id}/reviews", status_code=201)
async def create_review(
    product_id: str,
    payload: ReviewCreateRequest,
    actor=Depends(get_review_actor),
    reviews: ReviewService = Depends(get_review_service),
):
    content = payload.model_dump(include={"rating", "comment", "image_url"})
    return await reviews.create(product_id, actor, content, guest=payload.guest, origin=payload.origin)


@app.patch("/reviews/{review_id}")
async def update_review(
    review_id: str,
    payload: ReviewUpdateRequest,
    current_user=Depends(get_current_user),
    reviews: ReviewService = Depends(get_review_service),
):
    return await reviews.update(current_user, review_id, payload.model_dump(exclude_unset=True))


@app.delete("/reviews/{review_id}")
async def delete_review(
    review_id: str,
    current_user=Depends(get_current_user),
    reviews: ReviewService = Depends(get_review_service),
):
    await reviews.delete(current_user, review_id)
    return {"message": "Review deleted"}


# Utility endpoints
@app.get("/")
def root():
    return {"message": "Marketplace API running"}


@app.get("/health")
@app.get("/api/health")
async def health(db: Database = Depends(get_db)):
    healthy = await db.ping()
    payload = {"status": "ok" if healthy else "degraded"}
    if config.ENVIRONMENT != "production":
        payload["db"] = db.name
    return JSONResponse(status_code=200 if healthy else 503, content=payload)
