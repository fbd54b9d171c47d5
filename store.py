from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload, sessionmaker

from database import SessionLocal, session_scope
from errors import DataFetchError, Unauthenticated
from models import TRANSACTION_MODELS, Category, SubCategory, TransactionType
from periods import Period
from schemas import CategoryOut, SubCategoryOut, TransactionRecord


logger = logging.getLogger(__name__)


class TransactionStore(Protocol):
    def list_transactions(
        self, user_id: str, kind: TransactionType, period: Period
    ) -> list[TransactionRecord]: ...


class CategoryDirectory(Protocol):
    def list_categories(self, type: TransactionType) -> list[CategoryOut]: ...

    def list_sub_categories(self, user_id: str) -> list[SubCategoryOut]: ...


def to_record(row) -> TransactionRecord:
    return TransactionRecord(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        amount=row.amount,
        date=row.date,
        category_id=row.category_id,
        sub_category_id=row.sub_category_id,
        memo=row.memo,
        paid=getattr(row, "paid", None),
        category_name=row.category.name if row.category else None,
        sub_category_name=row.sub_category.name if row.sub_category else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlTransactionStore:
    """Reads income/expense rows, one short-lived session per call."""

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self.session_factory = session_factory or SessionLocal

    def list_transactions(
        self, user_id: str, kind: TransactionType, period: Period
    ) -> list[TransactionRecord]:
        if not user_id:
            raise Unauthenticated()
        model = TRANSACTION_MODELS[kind]
        stmt = (
            select(model)
            .options(joinedload(model.category), joinedload(model.sub_category))
            .where(
                model.user_id == user_id,
                model.date.between(period.start, period.end),
            )
            .order_by(model.date.asc(), model.created_at.asc(), model.id.asc())
        )
        try:
            with session_scope(self.session_factory) as session:
                rows = session.scalars(stmt).all()
                return [to_record(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.exception(
                f"store_read_failed: user={user_id} kind={kind.value} "
                f"start={period.start} end={period.end}"
            )
            raise DataFetchError(
                f"Failed to read {kind.value} transactions for {period.slug}"
            ) from exc


class SqlCategoryDirectory:
    """Category lookups; global categories are cached, sub-categories never are."""

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self.session_factory = session_factory or SessionLocal
        self._categories: dict[TransactionType, list[CategoryOut]] = {}
        self._lock = threading.Lock()

    def list_categories(self, type: TransactionType) -> list[CategoryOut]:
        with self._lock:
            cached = self._categories.get(type)
        if cached is not None:
            return cached
        stmt = select(Category).where(Category.type == type).order_by(Category.name)
        try:
            with session_scope(self.session_factory) as session:
                categories = [
                    CategoryOut(id=c.id, name=c.name, type=c.type)
                    for c in session.scalars(stmt).all()
                ]
        except SQLAlchemyError as exc:
            logger.exception(f"category_read_failed: type={type.value}")
            raise DataFetchError(f"Failed to read {type.value} categories") from exc
        with self._lock:
            self._categories[type] = categories
        return categories

    def list_sub_categories(self, user_id: str) -> list[SubCategoryOut]:
        if not user_id:
            raise Unauthenticated()
        stmt = (
            select(SubCategory)
            .where(SubCategory.user_id == user_id)
            .order_by(SubCategory.name)
        )
        try:
            with session_scope(self.session_factory) as session:
                return [
                    SubCategoryOut.model_validate(sub)
                    for sub in session.scalars(stmt).all()
                ]
        except SQLAlchemyError as exc:
            logger.exception(f"sub_category_read_failed: user={user_id}")
            raise DataFetchError("Failed to read sub-categories") from exc
