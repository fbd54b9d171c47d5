from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from aggregation import CategoryLookup, compute_breakdown, fold_trend, summarize
from config import get_settings
from errors import (
    AggregationError,
    DataFetchError,
    InvalidPeriod,
    Outcome,
    Unauthenticated,
)
from models import TransactionType
from periods import MonthKey, Period, month_period, trend_window, window_period
from schemas import (
    CategoryBreakdownSet,
    MonthlyData,
    MonthlyTrend,
    Summary,
    TransactionRecord,
)
from store import CategoryDirectory, SqlTransactionStore, TransactionStore


logger = logging.getLogger(__name__)


@dataclass
class MonthReads:
    incomes: list[TransactionRecord]
    expenses: list[TransactionRecord]
    # None when the previous month could not be read.
    previous_incomes: Optional[list[TransactionRecord]]
    previous_expenses: Optional[list[TransactionRecord]]
    trend_incomes: Optional[list[TransactionRecord]] = None
    trend_expenses: Optional[list[TransactionRecord]] = None


class DashboardService:
    """Monthly summary, breakdown and trend for one user.

    Every store read runs in a worker thread and is bounded by the store timeout.
    Reads for one request are issued together and joined before any computation.
    A failed current-month or trend read fails the request. A failed previous-month
    read only marks the previous month as unavailable in the summary.
    """

    def __init__(
        self,
        store: Optional[TransactionStore] = None,
        directory: Optional[CategoryDirectory] = None,
        *,
        timeout: Optional[float] = None,
        trend_window: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.store = store or SqlTransactionStore()
        self.directory = directory
        self.timeout = settings.store_timeout_secs if timeout is None else timeout
        self.trend_window = (
            settings.trend_window if trend_window is None else trend_window
        )

    async def compute_summary(
        self, user_id: Optional[str], year: int, month: int
    ) -> Outcome[Summary]:
        try:
            self._require_user(user_id)
            anchor, _ = _resolve_months(year, month)
            reads = await self._fetch(user_id, anchor)
        except AggregationError as exc:
            return Outcome.failure(exc)
        return Outcome.success(
            summarize(
                reads.incomes,
                reads.expenses,
                reads.previous_incomes,
                reads.previous_expenses,
            )
        )

    async def compute_trend(
        self,
        user_id: Optional[str],
        year: int,
        month: int,
        window_size: Optional[int] = None,
    ) -> Outcome[MonthlyTrend]:
        size = self.trend_window if window_size is None else window_size
        try:
            self._require_user(user_id)
            _, months = _resolve_months(year, month, size)
            period = window_period(months)
            incomes, expenses = await self._join_required(
                self._read(user_id, TransactionType.income, period),
                self._read(user_id, TransactionType.expense, period),
            )
        except AggregationError as exc:
            return Outcome.failure(exc)
        return Outcome.success(
            MonthlyTrend(
                income=fold_trend(months, incomes),
                expense=fold_trend(months, expenses),
            )
        )

    async def get_monthly_dashboard_data(
        self, user_id: Optional[str], year: int, month: int
    ) -> Outcome[MonthlyData]:
        logger.info(f"dashboard_fetch: user={user_id} year={year} month={month}")
        try:
            self._require_user(user_id)
            anchor, months = _resolve_months(year, month, self.trend_window)
            reads, lookup = await asyncio.gather(
                self._fetch(user_id, anchor, window=months),
                self._lookup(user_id),
            )
        except AggregationError as exc:
            logger.warning(
                f"dashboard_fetch_failed: user={user_id} year={year} month={month} "
                f"error={exc.code}"
            )
            return Outcome.failure(exc)

        summary = summarize(
            reads.incomes,
            reads.expenses,
            reads.previous_incomes,
            reads.previous_expenses,
        )
        data = MonthlyData(
            year=year,
            month=month,
            summary=summary,
            incomes=reads.incomes,
            expenses=reads.expenses,
            category_breakdown=CategoryBreakdownSet(
                income=compute_breakdown(reads.incomes, lookup),
                expense=compute_breakdown(reads.expenses, lookup),
            ),
            monthly_trend=MonthlyTrend(
                income=fold_trend(months, reads.trend_incomes or []),
                expense=fold_trend(months, reads.trend_expenses or []),
            ),
        )
        logger.info(
            f"dashboard_ready: user={user_id} year={year} month={month} "
            f"income={summary.total_income} expense={summary.total_expense} "
            f"previous_available={summary.previous_available}"
        )
        return Outcome.success(data)

    @staticmethod
    def _require_user(user_id: Optional[str]) -> None:
        if not user_id:
            raise Unauthenticated()

    async def _fetch(
        self,
        user_id: str,
        current: MonthKey,
        *,
        window: Optional[Sequence[MonthKey]] = None,
    ) -> MonthReads:
        current_period = month_period(current)
        previous_period = month_period(current.previous())
        required = [
            self._read(user_id, TransactionType.income, current_period),
            self._read(user_id, TransactionType.expense, current_period),
        ]
        if window:
            trend_period = window_period(list(window))
            required += [
                self._read(user_id, TransactionType.income, trend_period),
                self._read(user_id, TransactionType.expense, trend_period),
            ]
        optional = [
            self._read(user_id, TransactionType.income, previous_period),
            self._read(user_id, TransactionType.expense, previous_period),
        ]
        results = await asyncio.gather(*required, *optional, return_exceptions=True)
        required_results = _raise_first_error(results[: len(required)])

        previous = results[len(required) :]
        previous_incomes: Optional[list[TransactionRecord]] = None
        previous_expenses: Optional[list[TransactionRecord]] = None
        failure = next((r for r in previous if isinstance(r, BaseException)), None)
        if failure is None:
            previous_incomes, previous_expenses = previous
        elif isinstance(failure, DataFetchError):
            logger.warning(
                f"previous_month_unavailable: user={user_id} month={current.previous()} "
                f"error={failure}"
            )
        else:
            raise failure

        reads = MonthReads(
            incomes=required_results[0],
            expenses=required_results[1],
            previous_incomes=previous_incomes,
            previous_expenses=previous_expenses,
        )
        if window:
            reads.trend_incomes = required_results[2]
            reads.trend_expenses = required_results[3]
        return reads

    async def _join_required(self, *reads) -> list[list[TransactionRecord]]:
        results = await asyncio.gather(*reads, return_exceptions=True)
        return _raise_first_error(results)

    async def _read(
        self, user_id: str, kind: TransactionType, period: Period
    ) -> list[TransactionRecord]:
        try:
            rows = await asyncio.wait_for(
                asyncio.to_thread(self.store.list_transactions, user_id, kind, period),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error(
                f"store_read_timeout: user={user_id} kind={kind.value} "
                f"period={period.slug} timeout={self.timeout}"
            )
            raise DataFetchError(
                f"Timed out reading {kind.value} transactions for {period.slug}"
            ) from exc
        except AggregationError:
            raise
        except Exception as exc:
            logger.exception(
                f"store_read_failed: user={user_id} kind={kind.value} period={period.slug}"
            )
            raise DataFetchError(
                f"Failed to read {kind.value} transactions for {period.slug}"
            ) from exc
        return _owned_by(user_id, rows)

    async def _lookup(self, user_id: str) -> Optional[CategoryLookup]:
        if self.directory is None:
            return None

        def build() -> CategoryLookup:
            categories = [
                *self.directory.list_categories(TransactionType.income),
                *self.directory.list_categories(TransactionType.expense),
            ]
            return CategoryLookup.from_entries(
                categories, self.directory.list_sub_categories(user_id)
            )

        try:
            return await asyncio.wait_for(asyncio.to_thread(build), self.timeout)
        except (DataFetchError, asyncio.TimeoutError):
            logger.warning(f"category_lookup_unavailable: user={user_id}")
            return None


def _resolve_months(
    year: int, month: int, window_size: int = 1
) -> tuple[MonthKey, list[MonthKey]]:
    """Anchor month and trend window, with the previous month checked as well."""
    try:
        anchor = MonthKey(year, month)
        anchor.previous()
        return anchor, trend_window(anchor, window_size)
    except ValueError as exc:
        raise InvalidPeriod(str(exc)) from exc


def _raise_first_error(results: Sequence[object]) -> list:
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


def _owned_by(user_id: str, rows: Sequence[TransactionRecord]) -> list[TransactionRecord]:
    owned = [row for row in rows if row.user_id == user_id]
    if len(owned) != len(rows):
        logger.error(
            f"foreign_rows_dropped: user={user_id} dropped={len(rows) - len(owned)}"
        )
    return owned
