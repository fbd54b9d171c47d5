import asyncio
import time
from datetime import date

import pytest

from dashboard import DashboardService
from database import Base, build_engine, build_sessionmaker
from errors import DataFetchError, InvalidPeriod, Unauthenticated
from models import Category, Expense, Income, SubCategory, TransactionType
from schemas import CategoryOut, SubCategoryOut, TransactionRecord
from store import SqlCategoryDirectory, SqlTransactionStore


def _record(
    user_id: str, amount: int, on: date, category_id: str, sub_category_id=None
) -> TransactionRecord:
    return TransactionRecord(
        id=f"{user_id}-{on.isoformat()}-{amount}",
        user_id=user_id,
        title="row",
        amount=amount,
        date=on,
        category_id=category_id,
        sub_category_id=sub_category_id,
    )


class FakeStore:
    def __init__(self, incomes=(), expenses=(), failing=(), scoped=True) -> None:
        self.rows = {
            TransactionType.income: list(incomes),
            TransactionType.expense: list(expenses),
        }
        self.failing = set(failing)
        self.scoped = scoped
        self.calls: list[tuple[TransactionType, str]] = []

    def list_transactions(self, user_id, kind, period):
        self.calls.append((kind, period.slug))
        if (kind, period.slug) in self.failing:
            raise DataFetchError(f"{kind.value} {period.slug} unavailable")
        return [
            r
            for r in self.rows[kind]
            if period.contains(r.date) and (not self.scoped or r.user_id == user_id)
        ]


class FakeDirectory:
    def list_categories(self, type):
        if type == TransactionType.income:
            return [CategoryOut(id="salary", name="Salary", type=type)]
        return [CategoryOut(id="food", name="Food", type=type)]

    def list_sub_categories(self, user_id):
        return [
            SubCategoryOut(
                id="grocery", name="Groceries", category_id="food", user_id=user_id
            )
        ]


def test_dashboard_issues_six_independent_reads() -> None:
    store = FakeStore()
    service = DashboardService(store, timeout=5, trend_window=6)

    outcome = asyncio.run(service.get_monthly_dashboard_data("user-a", 2025, 1))

    assert outcome.ok
    assert sorted(store.calls, key=lambda c: (c[0].value, c[1])) == [
        (TransactionType.expense, "2024-12"),
        (TransactionType.expense, "2025-01"),
        (TransactionType.expense, "window"),
        (TransactionType.income, "2024-12"),
        (TransactionType.income, "2025-01"),
        (TransactionType.income, "window"),
    ]


def test_dashboard_assembles_all_sections() -> None:
    store = FakeStore(
        incomes=[
            _record("user-a", 280_000, date(2025, 1, 1), "salary"),
            _record("user-a", 270_000, date(2024, 12, 1), "salary"),
        ],
        expenses=[
            _record("user-a", 20_000, date(2025, 1, 5), "food", "grocery"),
            _record("user-a", 15_000, date(2025, 1, 9), "food"),
            _record("user-a", 40_000, date(2024, 9, 9), "food"),
        ],
    )
    service = DashboardService(store, FakeDirectory(), timeout=5, trend_window=6)

    data = asyncio.run(service.get_monthly_dashboard_data("user-a", 2025, 1)).unwrap()

    assert data.summary.total_income == 280_000
    assert data.summary.total_expense == 35_000
    assert data.summary.income_diff == 10_000
    assert data.summary.expense_diff == 35_000
    assert len(data.incomes) == 1
    assert len(data.expenses) == 2

    [food] = data.category_breakdown.expense
    assert food.category == "Food"
    assert [s.sub_category for s in food.sub_categories] == ["Groceries", "Other"]
    assert data.category_breakdown.income[0].category == "Salary"

    assert [p.amount for p in data.monthly_trend.income] == [0, 0, 0, 0, 270_000, 280_000]
    assert [p.amount for p in data.monthly_trend.expense] == [0, 40_000, 0, 0, 0, 35_000]


def test_current_period_failure_returns_no_partial_data() -> None:
    store = FakeStore(failing={(TransactionType.income, "2025-01")})
    service = DashboardService(store, timeout=5)

    outcome = asyncio.run(service.get_monthly_dashboard_data("user-a", 2025, 1))

    assert outcome.data is None
    assert isinstance(outcome.error, DataFetchError)
    # Every read was still issued and awaited.
    assert len(store.calls) == 6


def test_trend_failure_fails_dashboard() -> None:
    store = FakeStore(failing={(TransactionType.expense, "window")})
    service = DashboardService(store, timeout=5)

    outcome = asyncio.run(service.get_monthly_dashboard_data("user-a", 2025, 1))

    assert isinstance(outcome.error, DataFetchError)


def test_previous_period_failure_degrades_summary_only() -> None:
    store = FakeStore(
        incomes=[_record("user-a", 100_000, date(2025, 1, 1), "salary")],
        failing={(TransactionType.expense, "2024-12")},
    )
    service = DashboardService(store, timeout=5)

    data = asyncio.run(service.get_monthly_dashboard_data("user-a", 2025, 1)).unwrap()

    assert data.summary.total_income == 100_000
    assert data.summary.previous_available is False
    assert data.summary.balance_diff is None
    assert data.monthly_trend.income[-1].amount == 100_000


def test_unscoped_rows_from_store_are_dropped() -> None:
    store = FakeStore(
        incomes=[
            _record("user-a", 1_000, date(2025, 1, 1), "salary"),
            _record("user-b", 9_000, date(2025, 1, 1), "salary"),
        ],
        scoped=False,
    )
    service = DashboardService(store, timeout=5)

    data = asyncio.run(service.get_monthly_dashboard_data("user-a", 2025, 1)).unwrap()

    assert data.summary.total_income == 1_000
    assert [r.user_id for r in data.incomes] == ["user-a"]
    assert data.monthly_trend.income[-1].amount == 1_000


def test_missing_user_is_unauthenticated() -> None:
    store = FakeStore()
    service = DashboardService(store, timeout=5)

    outcome = asyncio.run(service.get_monthly_dashboard_data("", 2025, 1))

    assert isinstance(outcome.error, Unauthenticated)
    assert store.calls == []


def test_slow_read_times_out_as_fetch_error() -> None:
    class SlowStore(FakeStore):
        def list_transactions(self, user_id, kind, period):
            time.sleep(0.3)
            return super().list_transactions(user_id, kind, period)

    service = DashboardService(SlowStore(), timeout=0.05)

    outcome = asyncio.run(service.get_monthly_dashboard_data("user-a", 2025, 1))

    assert isinstance(outcome.error, DataFetchError)


def test_zero_transactions_still_produce_complete_result() -> None:
    service = DashboardService(FakeStore(), timeout=5, trend_window=6)

    data = asyncio.run(service.get_monthly_dashboard_data("user-a", 2025, 1)).unwrap()

    assert data.summary.total_income == 0
    assert data.summary.balance_diff == 0
    assert data.category_breakdown.income == []
    assert data.category_breakdown.expense == []
    assert len(data.monthly_trend.income) == 6


def test_dashboard_against_database(tmp_path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'dashboard.db'}")
    Base.metadata.create_all(engine)
    factory = build_sessionmaker(engine)
    with factory() as session:
        session.add_all(
            [
                Category(id="salary", name="Salary", type=TransactionType.income),
                Category(id="food", name="Food", type=TransactionType.expense),
            ]
        )
        session.flush()
        session.add(
            SubCategory(id="grocery", user_id="user-a", name="Groceries", category_id="food")
        )
        session.flush()
        session.add_all(
            [
                Income(
                    user_id="user-a",
                    title="Pay",
                    amount=250_000,
                    date=date(2025, 6, 25),
                    category_id="salary",
                ),
                Expense(
                    user_id="user-a",
                    title="Market",
                    amount=8_000,
                    date=date(2025, 6, 3),
                    category_id="food",
                    sub_category_id="grocery",
                    paid=True,
                ),
                Expense(
                    user_id="user-b",
                    title="Market",
                    amount=99_000,
                    date=date(2025, 6, 3),
                    category_id="food",
                ),
            ]
        )
        session.commit()

    service = DashboardService(
        SqlTransactionStore(factory), SqlCategoryDirectory(factory), timeout=5
    )
    data = asyncio.run(service.get_monthly_dashboard_data("user-a", 2025, 6)).unwrap()

    assert data.summary.balance == 242_000
    assert data.expenses[0].paid is True
    assert data.expenses[0].sub_category_name == "Groceries"
    [food] = data.category_breakdown.expense
    assert food.sub_categories[0].sub_category == "Groceries"
    assert food.percentage == pytest.approx(100.0)


def test_unexpected_store_exception_is_returned_as_fetch_error() -> None:
    class DriverFailureStore(FakeStore):
        def list_transactions(self, user_id, kind, period):
            if period.slug == "window":
                raise ConnectionError("socket reset")
            return super().list_transactions(user_id, kind, period)

    service = DashboardService(DriverFailureStore(), timeout=5)

    outcome = asyncio.run(service.get_monthly_dashboard_data("user-a", 2025, 1))

    assert outcome.data is None
    assert isinstance(outcome.error, DataFetchError)


def test_invalid_month_is_returned_as_error() -> None:
    store = FakeStore()
    service = DashboardService(store, timeout=5)

    outcome = asyncio.run(service.get_monthly_dashboard_data("user-a", 2025, 13))

    assert isinstance(outcome.error, InvalidPeriod)
    assert store.calls == []
