"""
Named read/write operations over the catalog tables.

All SQL composition lives here; route handlers and the lifecycle layer only
call these functions.
"""
import math
from dataclasses import dataclass

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.orm import Session, selectinload

from .models import Category, Product, ProductCategory
from .schemas import ProductListParams


def _norm(name: str) -> str:
    return name.strip().lower()


def _name_key(column):
    return func.lower(func.trim(column))


def _active_categories_option():
    return selectinload(Product.categories.and_(Category.is_active.is_(True)))


def _has_active_category(name: str | None = None):
    criteria = [Category.is_active.is_(True)]
    if name is not None:
        criteria.append(_name_key(Category.name) == _norm(name))
    return Product.categories.any(and_(*criteria))


def _visible_products(db: Session):
    # An active product stays hidden once every category it belongs to is inactive
    return db.query(Product).filter(Product.is_active.is_(True), _has_active_category())


# ---- products ----

def find_product(db: Session, product_id: int) -> Product | None:
    return db.get(Product, product_id)


def find_active_with_active_categories(db: Session, product_id: int) -> Product | None:
    return (
        _visible_products(db)
        .filter(Product.id == product_id)
        .options(_active_categories_option())
        .execution_options(populate_existing=True)
        .first()
    )


@dataclass
class ProductPage:
    items: list
    total: int
    page: int
    per_page: int

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))

    @property
    def first_item(self) -> int | None:
        return (self.page - 1) * self.per_page + 1 if self.items else None

    @property
    def last_item(self) -> int | None:
        return (self.page - 1) * self.per_page + len(self.items) if self.items else None


SORT_COLUMNS = {
    "name": Product.name,
    "price": Product.price,
    "created_at": Product.created_at,
    "updated_at": Product.updated_at,
}


def list_active_filtered(db: Session, criteria: ProductListParams) -> ProductPage:
    query = _visible_products(db)

    names = list(criteria.categories)
    if criteria.category_name:
        names.append(criteria.category_name)
    for name in dict.fromkeys(_norm(n) for n in names):
        query = query.filter(_has_active_category(name))

    strict = sorted({_norm(n) for n in criteria.strict_categories})
    if strict:
        matched = (
            select(func.count(func.distinct(Category.id)))
            .select_from(ProductCategory)
            .join(Category, Category.id == ProductCategory.category_id)
            .where(
                ProductCategory.product_id == Product.id,
                Category.is_active.is_(True),
                _name_key(Category.name).in_(strict),
            )
            .correlate(Product)
            .scalar_subquery()
        )
        query = query.filter(matched >= len(strict))

    if criteria.min_price is not None:
        query = query.filter(Product.price >= criteria.min_price)
    if criteria.max_price is not None:
        query = query.filter(Product.price <= criteria.max_price)

    if criteria.search:
        escaped = (
            criteria.search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        )
        pattern = f"%{escaped}%"
        query = query.filter(
            or_(
                Product.name.ilike(pattern, escape="\\"),
                Product.description.ilike(pattern, escape="\\"),
            )
        )

    if criteria.in_stock:
        query = query.filter(Product.stock > 0)

    total = query.count()

    # sort_by is allow-listed by the schema; never interpolate client input
    sort_col = SORT_COLUMNS.get(criteria.sort_by, Product.created_at)
    if criteria.sort_order == "asc":
        query = query.order_by(sort_col.asc(), Product.id.asc())
    else:
        query = query.order_by(sort_col.desc(), Product.id.desc())

    items = (
        query.options(_active_categories_option())
        .execution_options(populate_existing=True)
        .offset((criteria.page - 1) * criteria.per_page)
        .limit(criteria.per_page)
        .all()
    )
    return ProductPage(items=items, total=total, page=criteria.page, per_page=criteria.per_page)


def is_linked_to_active_category(db: Session, product_id: int) -> bool:
    stmt = (
        select(ProductCategory.id)
        .join(Category, Category.id == ProductCategory.category_id)
        .where(ProductCategory.product_id == product_id, Category.is_active.is_(True))
        .limit(1)
    )
    return db.execute(stmt).first() is not None


# ---- categories ----

def find_category(db: Session, category_id: int) -> Category | None:
    return db.get(Category, category_id)


def find_category_by_name(db: Session, name: str) -> Category | None:
    """Case-insensitive lookup across active and inactive rows."""
    return db.query(Category).filter(_name_key(Category.name) == _norm(name)).first()


def resolve_active_categories(db: Session, names: list[str]) -> tuple[list[Category], list[str]]:
    """
    Map requested names to active categories.

    Returns (resolved, invalid) where invalid keeps every requested name that
    has no active match, in request order.
    """
    wanted = list(dict.fromkeys(n.strip() for n in names if n.strip()))
    keys = {_norm(n) for n in wanted}
    rows = (
        db.query(Category)
        .filter(Category.is_active.is_(True), _name_key(Category.name).in_(keys))
        .all()
    ) if keys else []
    by_key = {_norm(c.name): c for c in rows}
    resolved, invalid = [], []
    for name in wanted:
        cat = by_key.get(_norm(name))
        if cat is None:
            invalid.append(name)
        elif cat not in resolved:
            resolved.append(cat)
    return resolved, invalid


def sync_associations(db: Session, product: Product, categories: list[Category]) -> None:
    """Replace the product's association set with exactly `categories`."""
    db.flush()
    wanted = list(dict.fromkeys(c.id for c in categories))
    existing = set(
        db.scalars(select(ProductCategory.category_id).where(ProductCategory.product_id == product.id))
    )
    stale = existing - set(wanted)
    if stale:
        db.execute(
            delete(ProductCategory).where(
                ProductCategory.product_id == product.id,
                ProductCategory.category_id.in_(stale),
            )
        )
    for category_id in wanted:
        if category_id not in existing:
            db.add(ProductCategory(product_id=product.id, category_id=category_id))
    db.flush()
    db.expire(product, ["categories"])


def detach_all(db: Session, product: Product) -> None:
    db.execute(delete(ProductCategory).where(ProductCategory.product_id == product.id))
    db.expire(product, ["categories"])


def list_active_categories_with_counts(db: Session) -> list[tuple[Category, int]]:
    active_products = (
        select(func.count(ProductCategory.id))
        .select_from(ProductCategory)
        .join(Product, Product.id == ProductCategory.product_id)
        .where(ProductCategory.category_id == Category.id, Product.is_active.is_(True))
        .correlate(Category)
        .scalar_subquery()
    )
    rows = (
        db.query(Category, active_products.label("products_count"))
        .filter(Category.is_active.is_(True))
        .order_by(Category.name.asc())
        .all()
    )
    return [(c, int(n or 0)) for c, n in rows]


def list_inactive_categories(db: Session) -> list[Category]:
    return db.query(Category).filter(Category.is_active.is_(False)).order_by(Category.name.asc()).all()


def find_active_category_with_products(db: Session, category_id: int) -> tuple[Category, list[Product]] | None:
    category = (
        db.query(Category)
        .filter(Category.id == category_id, Category.is_active.is_(True))
        .first()
    )
    if category is None:
        return None
    products = (
        db.query(Product)
        .filter(Product.is_active.is_(True), Product.categories.any(Category.id == category_id))
        .options(_active_categories_option())
        .execution_options(populate_existing=True)
        .order_by(Product.id.asc())
        .all()
    )
    return category, products
