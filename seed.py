import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import session_scope
from models import Category, TransactionType


logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: dict[TransactionType, list[str]] = {
    TransactionType.income: [
        "Salary",
        "Bonus",
        "Business income",
        "Side job",
        "Investment income",
        "Miscellaneous income",
        "Other",
    ],
    TransactionType.expense: [
        "Food",
        "Housing",
        "Utilities",
        "Transport",
        "Communication",
        "Entertainment",
        "Beauty",
        "Medical",
        "Education",
        "Insurance",
        "Tax",
        "Furniture",
        "Social",
        "Pets",
        "Credit card",
        "Loans",
        "Other",
    ],
}


def seed_default_categories(session: Session) -> int:
    """Insert any missing default category; returns the number created."""
    created = 0
    for type, names in DEFAULT_CATEGORIES.items():
        existing = set(
            session.scalars(select(Category.name).where(Category.type == type)).all()
        )
        for name in names:
            if name in existing:
                continue
            session.add(Category(name=name, type=type))
            created += 1
    session.flush()
    return created


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    with session_scope() as session:
        count = seed_default_categories(session)
    logger.info(f"seed_categories: created={count}")
