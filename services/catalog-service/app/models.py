from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    String, Text, Boolean, Numeric, Integer, DateTime, ForeignKey, Index,
    UniqueConstraint, CheckConstraint, event, func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, object_session
from .db import Base
from . import media


class ProductCategory(Base):
    __tablename__ = "product_category"
    __table_args__ = (UniqueConstraint("product_id", "category_id", name="uq_product_category"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id", ondelete="CASCADE"), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(primary_key=True)

    # unique on lower(trim(name)), see uq_categories_name_ci below
    name: Mapped[str] = mapped_column(String(255), index=True, nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    products: Mapped[list["Product"]] = relationship(
        secondary="product_category",
        back_populates="categories",
        passive_deletes=True,
    )


# Names compare trimmed and case-insensitive everywhere, the store included
Index("uq_categories_name_ci", func.lower(func.trim(Category.name)), unique=True)


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_products_stock"),)

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(String(255), index=True, nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # money => NUMERIC, not FLOAT
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Storage-relative path; the public URL is derived, never stored
    image: Mapped[str | None] = mapped_column(String(500), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    categories: Mapped[list["Category"]] = relationship(
        secondary="product_category",
        back_populates="products",
        passive_deletes=True,
    )

    @property
    def image_url(self) -> str | None:
        return media.public_url(self.image)


class ProductRequest(Base):
    __tablename__ = "product_requests"
    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_product_requests_quantity"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)  # pending | approved | rejected

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    product: Mapped["Product"] = relationship()


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)

    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class RevokedToken(Base):
    __tablename__ = "revoked_tokens"

    id: Mapped[int] = mapped_column(primary_key=True)
    jti: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    revoked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# Stored image files follow the row: a replaced or deleted image is removed
# from the media store once the owning transaction commits.

@event.listens_for(Product.image, "set", active_history=True)
def _image_replaced(target, value, oldvalue, initiator):
    if not isinstance(oldvalue, str) or not oldvalue or oldvalue == value:
        return
    session = object_session(target)
    if session is not None:
        media.discard_after_commit(session, oldvalue)


@event.listens_for(Product, "after_delete")
def _product_deleted(mapper, connection, target):
    session = object_session(target)
    if target.image and session is not None:
        media.discard_after_commit(session, target.image)
