"""
Write operations for products, categories and product requests.

Every operation validates first, then runs its row changes inside a single
transaction. Image files are uploaded inside that transaction and cleaned up
by the session hooks in `media` on commit/rollback.
"""
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import media, repository
from .errors import CatalogError, ConflictingState, NotFound, TransactionFailure, ValidationFailed
from .models import Category, Product, ProductRequest
from .schemas import (
    CategoryCreate, CategoryUpdate, ProductCreate, ProductUpdate,
    ProductRequestCreate, ProductRequestStatusUpdate,
)

logger = logging.getLogger(__name__)

PRODUCT_DELETE_GUARD = os.getenv("PRODUCT_DELETE_GUARD", "false").lower() == "true"


@dataclass
class ImageUpload:
    filename: str
    content_type: str
    data: bytes


@contextmanager
def _write(db: Session, failure_message: str):
    try:
        yield
        db.commit()
    except CatalogError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.exception("%s: %r", failure_message, e)
        raise TransactionFailure(failure_message) from e


def _resolve_categories(db: Session, names: list[str]) -> list[Category]:
    resolved, invalid = repository.resolve_active_categories(db, names)
    if invalid:
        raise ValidationFailed(
            {"categories": [f"The selected category '{n}' does not exist or is inactive." for n in invalid]},
            message="Invalid categories: " + ", ".join(invalid),
        )
    return resolved


def check_image(image: ImageUpload | None) -> list[str]:
    if image is None:
        return []
    return media.validate_image(image.filename, image.content_type, image.data)


# ---- products ----

def create_product(db: Session, data: ProductCreate, image: ImageUpload, claims: dict) -> Product:
    problems = check_image(image)
    if problems:
        raise ValidationFailed({"image": problems})
    categories = _resolve_categories(db, data.categories)

    with _write(db, "Failed to create product"):
        product = Product(
            name=data.name,
            description=data.description,
            price=data.price,
            stock=data.stock,
            is_active=True,
        )
        db.add(product)
        db.flush()  # get product.id for the media namespace

        product.image = media.upload_product_image(
            db, product.id, image.filename, image.content_type, image.data
        )
        repository.sync_associations(db, product, categories)

    logger.info("Product created id=%s by=%s", product.id, claims.get("sub"))
    return product


def update_product(db: Session, product_id: int, data: ProductUpdate, image: ImageUpload | None, claims: dict) -> Product:
    product = repository.find_product(db, product_id)
    if product is None:
        raise NotFound("Product not found")

    problems = check_image(image)
    if problems:
        raise ValidationFailed({"image": problems})
    categories = _resolve_categories(db, data.categories) if data.categories is not None else None

    fields = data.model_dump(exclude_unset=True, exclude={"categories"})

    with _write(db, "Failed to update product"):
        for key, value in fields.items():
            if value is None and key != "description":
                continue
            setattr(product, key, value)

        if image is not None:
            # the replaced file is discarded by the Product.image hook after commit
            product.image = media.upload_product_image(
                db, product.id, image.filename, image.content_type, image.data
            )

        if categories is not None:
            repository.sync_associations(db, product, categories)

    logger.info("Product updated id=%s fields=%s by=%s", product.id, sorted(fields), claims.get("sub"))
    return product


def soft_delete_product(db: Session, product_id: int, claims: dict, guard: bool | None = None) -> Product:
    product = repository.find_product(db, product_id)
    if product is None:
        raise NotFound("Product not found")
    if not product.is_active:
        raise ConflictingState("Product is already inactive")

    if guard is None:
        guard = PRODUCT_DELETE_GUARD
    if guard and repository.is_linked_to_active_category(db, product.id):
        raise ConflictingState("Product is still linked to active categories")

    with _write(db, "Failed to delete product"):
        product.is_active = False

    logger.info("Product deactivated id=%s by=%s", product.id, claims.get("sub"))
    return product


def hard_delete_product(db: Session, product_id: int, claims: dict) -> None:
    product = repository.find_product(db, product_id)
    if product is None:
        raise NotFound("Product not found")

    with _write(db, "Failed to delete product"):
        repository.detach_all(db, product)
        db.delete(product)

    logger.info("Product purged id=%s by=%s", product_id, claims.get("sub"))


def reactivate_product(db: Session, product_id: int, claims: dict) -> Product:
    product = repository.find_product(db, product_id)
    if product is None:
        raise NotFound("Product not found")
    if product.is_active:
        raise ConflictingState("Product is already active")

    with _write(db, "Failed to reactivate product"):
        product.is_active = True

    logger.info("Product reactivated id=%s by=%s", product.id, claims.get("sub"))
    return product


# ---- categories ----

def _name_taken():
    return ValidationFailed({"name": ["The name has already been taken."]})


def create_or_reactivate_category(db: Session, data: CategoryCreate, claims: dict) -> tuple[Category, bool]:
    """
    Create a category, or bring back an inactive one with the same name.

    Returns (category, created).
    """
    existing = repository.find_category_by_name(db, data.name)
    if existing is not None and existing.is_active:
        raise _name_taken()

    with _write(db, "Failed to create category"):
        if existing is None:
            category = Category(name=data.name, description=data.description, is_active=True)
            try:
                with db.begin_nested():
                    db.add(category)
                    db.flush()
            except IntegrityError:
                # lost a race against a concurrent create of the same name
                existing = repository.find_category_by_name(db, data.name)
                if existing is None or existing.is_active:
                    raise _name_taken()

        if existing is not None:
            category = existing
            category.is_active = True
            if data.description is not None:
                category.description = data.description

    created = existing is None
    logger.info(
        "Category %s id=%s by=%s", "created" if created else "reactivated", category.id, claims.get("sub")
    )
    return category, created


def update_category(db: Session, category_id: int, data: CategoryUpdate, claims: dict) -> Category:
    category = repository.find_category(db, category_id)
    if category is None:
        raise NotFound("Category not found")

    fields = data.model_dump(exclude_unset=True)
    if fields.get("name") is not None:
        clash = repository.find_category_by_name(db, fields["name"])
        if clash is not None and clash.id != category.id:
            raise _name_taken()

    with _write(db, "Failed to update category"):
        for key, value in fields.items():
            if value is None and key == "name":
                continue
            setattr(category, key, value)

    logger.info("Category updated id=%s fields=%s by=%s", category.id, sorted(fields), claims.get("sub"))
    return category


def soft_delete_category(db: Session, category_id: int, claims: dict) -> Category:
    category = repository.find_category(db, category_id)
    if category is None:
        raise NotFound("Category not found")
    if not category.is_active:
        raise ConflictingState("Category is already inactive")

    with _write(db, "Failed to delete category"):
        category.is_active = False

    logger.info("Category deactivated id=%s by=%s", category.id, claims.get("sub"))
    return category


def reactivate_category(db: Session, category_id: int, claims: dict) -> Category:
    category = repository.find_category(db, category_id)
    if category is None:
        raise NotFound("Category not found")
    if category.is_active:
        raise ConflictingState("Category is already active")

    with _write(db, "Failed to reactivate category"):
        category.is_active = True

    logger.info("Category reactivated id=%s by=%s", category.id, claims.get("sub"))
    return category


def bulk_activate_categories(db: Session, ids: list[int], claims: dict) -> list[Category]:
    wanted = list(dict.fromkeys(ids))
    rows = {c.id: c for c in db.query(Category).filter(Category.id.in_(wanted)).all()}
    missing = [i for i in wanted if i not in rows]
    if missing:
        raise ValidationFailed({"ids": [f"Category {i} does not exist." for i in missing]})

    activated = [rows[i] for i in wanted if not rows[i].is_active]
    with _write(db, "Failed to activate categories"):
        for category in activated:
            category.is_active = True

    logger.info("Categories activated ids=%s by=%s", [c.id for c in activated], claims.get("sub"))
    return activated


# ---- product requests ----

def submit_product_request(db: Session, user_id: int, data: ProductRequestCreate) -> ProductRequest:
    product = repository.find_product(db, data.product_id)
    if product is None or not product.is_active:
        raise NotFound("Product not available")
    if product.stock < data.quantity:
        raise ConflictingState("Insufficient stock")

    with _write(db, "Failed to submit product request"):
        request = ProductRequest(
            user_id=user_id,
            product_id=product.id,
            quantity=data.quantity,
            notes=data.notes,
            status="pending",
        )
        db.add(request)

    logger.info("Product request submitted id=%s user=%s product=%s", request.id, user_id, product.id)
    return request


def update_product_request_status(db: Session, request_id: int, data: ProductRequestStatusUpdate, claims: dict) -> ProductRequest:
    request = db.get(ProductRequest, request_id)
    if request is None:
        raise NotFound("Product request not found")

    with _write(db, "Failed to update product request"):
        request.status = data.status
        if data.notes is not None:
            request.notes = data.notes

    logger.info("Product request id=%s status=%s by=%s", request.id, request.status, claims.get("sub"))
    return request
