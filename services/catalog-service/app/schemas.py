from datetime import datetime
from decimal import Decimal
from typing import ClassVar, Literal

from pydantic import BaseModel, EmailStr, Field, ConfigDict, field_serializer, field_validator

PRICE_MIN = Decimal("1000")
PRICE_MAX = Decimal("10000000")

MAX_PER_PAGE = 50
DEFAULT_PER_PAGE = 15
SORTABLE_COLUMNS = ("name", "price", "created_at", "updated_at")

MAX_PASSWORD_BYTES = 72  # bcrypt limit


def split_names(value) -> list[str]:
    """Accept 'a,b', ['a', 'b'] or ['a,b', 'c']; trim and drop blanks."""
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else [value]
    names = []
    for item in items:
        for part in str(item).split(","):
            part = part.strip()
            if part:
                names.append(part)
    return names


def _truthy(value) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


# ---- categories ----

class CategoryOut(BaseModel):
    id: int
    name: str
    description: str | None = None
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class CategoryWithCountOut(CategoryOut):
    products_count: int = 0


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("The name field is required.")
        return v


class CategoryUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("The name field must not be blank.")
        return v


class BulkActivateIn(BaseModel):
    ids: list[int] = Field(min_length=1)


# ---- products ----

class ProductOut(BaseModel):
    id: int
    name: str
    description: str | None = None
    price: Decimal
    stock: int
    image: str | None = None
    image_url: str | None = None
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None
    categories: list[CategoryOut] = []

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("price")
    def two_places(self, v: Decimal) -> str:
        # fixed-point: always two fractional digits
        return f"{v:.2f}"


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    price: Decimal = Field(ge=PRICE_MIN, le=PRICE_MAX, decimal_places=2)
    stock: int = Field(default=0, ge=0)
    categories: list[str] = Field(min_length=1)

    @field_validator("categories", mode="before")
    @classmethod
    def split_categories(cls, v):
        return split_names(v)


class ProductUpdate(BaseModel):
    """Partial update: a field left as None is not touched."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    price: Decimal | None = Field(default=None, ge=PRICE_MIN, le=PRICE_MAX, decimal_places=2)
    stock: int | None = Field(default=None, ge=0)
    is_active: bool | None = None
    categories: list[str] | None = None

    @field_validator("categories", mode="before")
    @classmethod
    def split_categories(cls, v):
        if v is None:
            return None
        return split_names(v)

    @field_validator("categories")
    @classmethod
    def categories_not_empty(cls, v):
        if v is not None and not v:
            raise ValueError("At least one category is required.")
        return v


class ProductListParams(BaseModel):
    categories: list[str] = []
    category_name: str | None = None
    strict_categories: list[str] = []
    min_price: Decimal | None = Field(default=None, ge=0)
    max_price: Decimal | None = Field(default=None, ge=0)
    search: str | None = None
    in_stock: bool = False
    sort_by: str = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"
    page: int = Field(default=1, ge=1)
    per_page: int = DEFAULT_PER_PAGE

    # Echoed back to the client as the `filters` block
    ECHOED: ClassVar[tuple] = (
        "categories", "category_name", "strict_categories", "search",
        "min_price", "max_price", "in_stock", "sort_by", "sort_order",
    )

    @field_validator("categories", "strict_categories", mode="before")
    @classmethod
    def split_lists(cls, v):
        return split_names(v)

    @field_validator("category_name", "search", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("min_price", "max_price", mode="before")
    @classmethod
    def blank_price(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("in_stock", mode="before")
    @classmethod
    def parse_in_stock(cls, v):
        return _truthy(v) if v is not None else False

    @field_validator("sort_by", mode="before")
    @classmethod
    def allow_listed_sort(cls, v):
        return v if v in SORTABLE_COLUMNS else "created_at"

    @field_validator("sort_order", mode="before")
    @classmethod
    def lower_sort_order(cls, v):
        return str(v).strip().lower() if v is not None else "desc"

    @field_validator("per_page", mode="before")
    @classmethod
    def clamp_per_page(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_PER_PAGE
        try:
            n = int(v)
        except (TypeError, ValueError):
            raise ValueError("The per page must be an integer.")
        return max(1, min(n, MAX_PER_PAGE))

    @classmethod
    def from_query(cls, query_params) -> tuple["ProductListParams", dict]:
        """Build from a Starlette QueryParams; also return the raw filters echo."""
        raw = {}
        for key in cls.model_fields:
            values = query_params.getlist(key) or query_params.getlist(f"{key}[]")
            if not values:
                continue
            raw[key] = values if key in ("categories", "strict_categories") else values[-1]
        echo = {
            k: (v[0] if isinstance(v, list) and len(v) == 1 else v)
            for k, v in raw.items() if k in cls.ECHOED
        }
        return cls(**raw), echo


class PaginationOut(BaseModel):
    current_page: int
    last_page: int
    per_page: int
    total: int
    # 1-based index of the first/last item on this page; None when empty
    from_: int | None = Field(default=None, serialization_alias="from")
    to: int | None = None


# ---- product requests ----

class ProductRequestCreate(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)
    notes: str | None = None


class ProductRequestStatusUpdate(BaseModel):
    status: Literal["pending", "approved", "rejected"]
    notes: str | None = None


class ProductRequestOut(BaseModel):
    id: int
    user_id: int
    product_id: int
    quantity: int
    notes: str | None = None
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


# ---- auth ----

def _validate_password(pw: str) -> str:
    if pw is None or pw == "":
        raise ValueError("Password is required")
    if len(pw.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password too long (max {MAX_PASSWORD_BYTES} bytes)")
    return pw


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("password")
    @classmethod
    def password_ok(cls, v: str) -> str:
        return _validate_password(v)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    is_admin: bool
