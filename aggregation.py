"""Pure aggregation over fetched income and expense rows.

Nothing here performs I/O; the dashboard service fetches rows and hands them to
these functions. Rows may be ``TransactionRecord`` objects, ORM rows, or any object
with ``amount``, ``date``, ``category_id`` and ``sub_category_id`` attributes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping, Optional, Sequence

from periods import MonthKey, month_label
from schemas import (
    CategoryBreakdown,
    CategoryOut,
    SubCategoryOut,
    SubCategoryTotal,
    Summary,
    TrendPoint,
)

UNCATEGORIZED_LABEL = "Uncategorized"
OTHER_LABEL = "Other"
NO_SUB_CATEGORY = "__none__"


@dataclass(frozen=True)
class CategoryLookup:
    categories: Mapping[str, str] = field(default_factory=dict)
    sub_categories: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_entries(
        cls,
        categories: Iterable[CategoryOut],
        sub_categories: Iterable[SubCategoryOut] = (),
    ) -> "CategoryLookup":
        return cls(
            categories={c.id: c.name for c in categories},
            sub_categories={s.id: s.name for s in sub_categories},
        )

    def category_name(self, category_id: Optional[str]) -> Optional[str]:
        if category_id is None:
            return None
        return self.categories.get(category_id)

    def sub_category_name(self, sub_category_id: Optional[str]) -> Optional[str]:
        if sub_category_id is None:
            return None
        return self.sub_categories.get(sub_category_id)


@dataclass
class SubCategoryAccumulator:
    name: str
    amount: int = 0


@dataclass
class CategoryAccumulator:
    name: str
    total_amount: int = 0
    sub_categories: dict[str, SubCategoryAccumulator] = field(default_factory=dict)

    def add(self, sub_key: str, sub_name: str, amount: int) -> None:
        self.total_amount += amount
        bucket = self.sub_categories.get(sub_key)
        if bucket is None:
            bucket = SubCategoryAccumulator(name=sub_name)
            self.sub_categories[sub_key] = bucket
        bucket.amount += amount


def percentage(part: int, whole: int) -> float:
    return (part / whole * 100) if whole else 0.0


def _embedded_name(txn: object, relation: str) -> Optional[str]:
    name = getattr(txn, f"{relation}_name", None)
    if name:
        return name
    related = getattr(txn, relation, None)
    return getattr(related, "name", None) or None


def compute_breakdown(
    transactions: Iterable[object],
    category_lookup: Optional[CategoryLookup] = None,
) -> list[CategoryBreakdown]:
    lookup = category_lookup or CategoryLookup()
    accumulators: dict[Optional[str], CategoryAccumulator] = {}

    for txn in transactions:
        category_id = getattr(txn, "category_id", None)
        acc = accumulators.get(category_id)
        if acc is None:
            name = (
                _embedded_name(txn, "category")
                or lookup.category_name(category_id)
                or UNCATEGORIZED_LABEL
            )
            acc = CategoryAccumulator(name=name)
            accumulators[category_id] = acc

        sub_category_id = getattr(txn, "sub_category_id", None)
        sub_name = (
            _embedded_name(txn, "sub_category")
            or lookup.sub_category_name(sub_category_id)
            or OTHER_LABEL
        )
        acc.add(sub_category_id or NO_SUB_CATEGORY, sub_name, int(txn.amount))

    total = sum(acc.total_amount for acc in accumulators.values())
    return [
        CategoryBreakdown(
            category=acc.name,
            total_amount=acc.total_amount,
            percentage=percentage(acc.total_amount, total),
            sub_categories=[
                SubCategoryTotal(
                    sub_category=sub.name,
                    amount=sub.amount,
                    percentage=percentage(sub.amount, acc.total_amount),
                )
                for sub in acc.sub_categories.values()
            ],
        )
        for acc in accumulators.values()
    ]


def total_amount(transactions: Iterable[object]) -> int:
    return sum(int(txn.amount) for txn in transactions)


def summarize(
    incomes: Sequence[object],
    expenses: Sequence[object],
    previous_incomes: Optional[Sequence[object]],
    previous_expenses: Optional[Sequence[object]],
) -> Summary:
    """Totals for a month and their difference to the previous month.

    Passing ``None`` for either previous-month sequence marks the previous month
    as unknown: its totals and all diffs are left as ``None``.
    """
    total_income = total_amount(incomes)
    total_expense = total_amount(expenses)
    balance = total_income - total_expense
    summary = Summary(
        total_income=total_income,
        total_expense=total_expense,
        balance=balance,
        income_count=len(incomes),
        expense_count=len(expenses),
        previous_available=False,
    )
    if previous_incomes is None or previous_expenses is None:
        return summary

    last_income = total_amount(previous_incomes)
    last_expense = total_amount(previous_expenses)
    last_balance = last_income - last_expense
    return summary.model_copy(
        update={
            "previous_available": True,
            "last_month_total_income": last_income,
            "last_month_total_expense": last_expense,
            "last_month_balance": last_balance,
            "income_diff": total_income - last_income,
            "expense_diff": total_expense - last_expense,
            "balance_diff": balance - last_balance,
        }
    )


def fold_trend(
    months: Sequence[MonthKey], transactions: Iterable[object]
) -> list[TrendPoint]:
    # Seed every month first so months without rows still produce a point.
    buckets: dict[MonthKey, int] = {key: 0 for key in months}
    for txn in transactions:
        key = MonthKey.of(txn.date)
        if key not in buckets:
            continue
        buckets[key] += int(txn.amount)
    return [
        TrendPoint(key=str(key), month=month_label(key), amount=amount)
        for key, amount in buckets.items()
    ]


def count_distinct_months(dates: Iterable[date]) -> int:
    return len({MonthKey.of(d) for d in dates})
