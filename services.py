from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Sequence, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from errors import Unauthenticated
from models import (
    TRANSACTION_MODELS,
    Category,
    Expense,
    Income,
    SubCategory,
    TransactionType,
)
from periods import MonthKey, clamp_to_month, month_period
from schemas import (
    BulkCopyItem,
    CategoryOut,
    ExpenseIn,
    IncomeIn,
    SubCategoryIn,
    SubCategoryOut,
)


logger = logging.getLogger(__name__)

Transaction = Union[Income, Expense]


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise Unauthenticated()
    return user_id


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = _require_user(user_id)

    def list_for_type(self, type: TransactionType) -> list[CategoryOut]:
        """Global categories of one type with only this user's sub-categories."""
        categories = self.session.scalars(
            select(Category).where(Category.type == type).order_by(Category.name)
        ).all()
        subs = self.session.scalars(
            select(SubCategory)
            .join(Category, Category.id == SubCategory.category_id)
            .where(SubCategory.user_id == self.user_id, Category.type == type)
            .order_by(SubCategory.name)
        ).all()
        by_parent: dict[str, list[SubCategoryOut]] = {}
        for sub in subs:
            by_parent.setdefault(sub.category_id, []).append(
                SubCategoryOut.model_validate(sub)
            )
        return [
            CategoryOut(
                id=c.id,
                name=c.name,
                type=c.type,
                sub_categories=by_parent.get(c.id, []),
            )
            for c in categories
        ]

    def add_sub_category(self, data: SubCategoryIn) -> SubCategory:
        parent = self.session.get(Category, data.category_id)
        if not parent:
            raise ValueError("Category not found")
        name = data.name.strip()
        existing = self.session.scalar(
            select(SubCategory).where(
                SubCategory.user_id == self.user_id,
                SubCategory.category_id == parent.id,
                func.lower(SubCategory.name) == name.lower(),
            )
        )
        if existing:
            raise ValueError("Sub-category with this name already exists")
        sub = SubCategory(user_id=self.user_id, category_id=parent.id, name=name)
        self.session.add(sub)
        self.session.commit()
        self.session.refresh(sub)
        logger.info(
            f"sub_category_added: user={self.user_id} category={parent.id} id={sub.id}"
        )
        return sub

    def delete_sub_category(self, sub_category_id: str) -> None:
        sub = self.session.get(SubCategory, sub_category_id)
        if not sub:
            raise ValueError("Sub-category not found")
        if sub.user_id != self.user_id:
            raise PermissionError("Sub-category belongs to another user")
        for model in TRANSACTION_MODELS.values():
            for txn in self.session.scalars(
                select(model).where(
                    model.user_id == self.user_id,
                    model.sub_category_id == sub.id,
                )
            ):
                txn.sub_category_id = None
        self.session.delete(sub)
        self.session.commit()


class TransactionService:
    """Create, read, update and delete one kind of transaction for one user."""

    def __init__(
        self, session: Session, kind: TransactionType, user_id: Optional[str]
    ) -> None:
        self.session = session
        self.kind = kind
        self.model = TRANSACTION_MODELS[kind]
        self.user_id = _require_user(user_id)

    def _validate_categories(
        self, category_id: str, sub_category_id: Optional[str]
    ) -> None:
        category = self.session.get(Category, category_id)
        if not category:
            raise ValueError("Category not found")
        if category.type != self.kind:
            raise ValueError("Category type mismatch")
        if sub_category_id is None:
            return
        sub = self.session.get(SubCategory, sub_category_id)
        if not sub or sub.user_id != self.user_id:
            raise ValueError("Sub-category not found")
        if sub.category_id != category.id:
            raise ValueError("Sub-category does not belong to category")

    def create(self, data: Union[IncomeIn, ExpenseIn]) -> Transaction:
        self._validate_categories(data.category_id, data.sub_category_id)
        txn = self.model(
            user_id=self.user_id,
            title=data.title.strip(),
            amount=data.amount,
            date=data.date,
            category_id=data.category_id,
            sub_category_id=data.sub_category_id,
            memo=data.memo or None,
        )
        if self.kind == TransactionType.expense:
            txn.paid = bool(getattr(data, "paid", False))
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: user={self.user_id} kind={self.kind.value} "
            f"id={txn.id} amount={txn.amount}"
        )
        return txn

    def get(self, transaction_id: str) -> Transaction:
        stmt = (
            select(self.model)
            .options(
                joinedload(self.model.category), joinedload(self.model.sub_category)
            )
            .where(self.model.id == transaction_id)
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise ValueError(f"{self.kind.value.capitalize()} not found")
        if txn.user_id != self.user_id:
            raise PermissionError(
                f"{self.kind.value.capitalize()} belongs to another user"
            )
        return txn

    def update(
        self, transaction_id: str, data: Union[IncomeIn, ExpenseIn]
    ) -> Transaction:
        # Ownership is checked first; concurrent edits of one record are last-write-wins.
        txn = self.get(transaction_id)
        self._validate_categories(data.category_id, data.sub_category_id)
        txn.title = data.title.strip()
        txn.amount = data.amount
        txn.date = data.date
        txn.category_id = data.category_id
        txn.sub_category_id = data.sub_category_id
        txn.memo = data.memo or None
        if self.kind == TransactionType.expense and hasattr(data, "paid"):
            txn.paid = bool(data.paid)
        txn.updated_at = datetime.utcnow()
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: str) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(
            f"transaction_deleted: user={self.user_id} kind={self.kind.value} "
            f"id={transaction_id}"
        )

    def set_paid(self, transaction_id: str, paid: bool) -> Transaction:
        if self.kind != TransactionType.expense:
            raise ValueError("Only expenses can be marked as paid")
        txn = self.get(transaction_id)
        txn.paid = paid
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def bulk_copy(
        self, target: MonthKey, items: Sequence[BulkCopyItem]
    ) -> list[Transaction]:
        """Copy owned rows into `target`, all or nothing.

        Category, sub-category, title, amount and memo are kept. Copied
        expenses start unpaid.
        """
        plan = []
        for item in items:
            source = self.get(item.original_id)
            if item.date is None:
                on = clamp_to_month(target, source.date.day)
            elif MonthKey.of(item.date) != target:
                raise ValueError(f"Date {item.date} is outside {target}")
            else:
                on = item.date
            plan.append((source, on))

        copies = []
        for source, on in plan:
            txn = self.model(
                user_id=self.user_id,
                title=source.title,
                amount=source.amount,
                date=on,
                category_id=source.category_id,
                sub_category_id=source.sub_category_id,
                memo=source.memo,
            )
            self.session.add(txn)
            copies.append(txn)
        self.session.commit()
        for txn in copies:
            self.session.refresh(txn)
        logger.info(
            f"transactions_copied: user={self.user_id} kind={self.kind.value} "
            f"month={target} count={len(copies)}"
        )
        return copies

    def list_month(self, year: int, month: int) -> list[Transaction]:
        period = month_period(MonthKey(year, month))
        stmt = (
            select(self.model)
            .options(
                joinedload(self.model.category), joinedload(self.model.sub_category)
            )
            .where(
                self.model.user_id == self.user_id,
                self.model.date.between(period.start, period.end),
            )
            .order_by(self.model.date.desc(), self.model.created_at.desc())
        )
        return self.session.scalars(stmt).all()

    def recent(self, limit: int = 50) -> list[Transaction]:
        stmt = (
            select(self.model)
            .options(
                joinedload(self.model.category), joinedload(self.model.sub_category)
            )
            .where(self.model.user_id == self.user_id)
            .order_by(self.model.date.desc(), self.model.created_at.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()
