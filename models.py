import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base):
    """Global category shared by every user."""

    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )

    sub_categories: Mapped[list["SubCategory"]] = relationship(
        "SubCategory", back_populates="category"
    )

    __table_args__ = (UniqueConstraint("type", "name", name="uq_category_type_name"),)


class SubCategory(Base):
    __tablename__ = "sub_categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    category_id: Mapped[str] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )

    category: Mapped["Category"] = relationship(
        "Category", back_populates="sub_categories"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "category_id", "name", name="uq_sub_category_user_parent_name"
        ),
        Index("ix_sub_categories_user", "user_id"),
    )


class TransactionMixin(TimestampMixin):
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    category_id: Mapped[str] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    sub_category_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("sub_categories.id", ondelete="SET NULL")
    )
    memo: Mapped[Optional[str]] = mapped_column(Text)


class Income(Base, TransactionMixin):
    __tablename__ = "incomes"

    category: Mapped["Category"] = relationship("Category")
    sub_category: Mapped[Optional["SubCategory"]] = relationship("SubCategory")

    __table_args__ = (
        Index("ix_incomes_user_date", "user_id", "date"),
        CheckConstraint("amount >= 0", name="ck_incomes_amount_positive"),
    )


class Expense(Base, TransactionMixin):
    __tablename__ = "expenses"

    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    category: Mapped["Category"] = relationship("Category")
    sub_category: Mapped[Optional["SubCategory"]] = relationship("SubCategory")

    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "date"),
        CheckConstraint("amount >= 0", name="ck_expenses_amount_positive"),
    )


TRANSACTION_MODELS: dict[TransactionType, type] = {
    TransactionType.income: Income,
    TransactionType.expense: Expense,
}


class AnalysisResult(Base):
    __tablename__ = "analysis_results"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")
    insights: Mapped[dict] = mapped_column(JSON, nullable=False)
    analysis_date: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_analysis_results_user_date", "user_id", "analysis_date"),
    )
