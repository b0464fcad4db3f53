"""
Seed an admin user and the default categories.

    python -m app.seed --admin-email admin@example.com --admin-password admin123
"""
import argparse
import logging

from sqlalchemy.orm import Session

from .db import Base, SessionLocal, engine, init_schema
from .models import Category, User
from .passwords import hash_password

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    ("Electronics", "Electronic devices and accessories"),
    ("Clothing", "Fashion and apparel"),
    ("Books", "Books and educational materials"),
    ("Home & Garden", "Home improvement and gardening"),
    ("Sports", "Sports equipment and accessories"),
]


def seed(db: Session, admin_email: str, admin_password: str) -> None:
    """Idempotent: existing rows are left as they are."""
    email = admin_email.lower()
    if not db.query(User).filter(User.email == email).first():
        db.add(User(email=email, password_hash=hash_password(admin_password), is_admin=True))
        logger.info("Seeded admin %s", email)

    existing = {name.strip().lower() for (name,) in db.query(Category.name).all()}
    for name, description in DEFAULT_CATEGORIES:
        if name.lower() not in existing:
            db.add(Category(name=name, description=description, is_active=True))
            logger.info("Seeded category %s", name)

    db.commit()


def main():
    parser = argparse.ArgumentParser(description="Seed the catalog database")
    parser.add_argument("--admin-email", default="admin@example.com")
    parser.add_argument("--admin-password", required=True)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    init_schema()
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        seed(db, args.admin_email, args.admin_password)
    finally:
        db.close()


if __name__ == "__main__":
    main()
