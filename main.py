import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from sqlalchemy.orm import Session

from aggregation import compute_breakdown
from analysis import (
    AnalysisService,
    AnalysisUnavailable,
    ChatCompletionGenerator,
    TextGenerator,
)
from auth import resolve_user_id
from config import get_settings
from dashboard import DashboardService
from database import SessionLocal, session_scope
from errors import (
    AggregationError,
    DataFetchError,
    InsufficientData,
    InvalidPeriod,
    Outcome,
    Unauthenticated,
)
from models import TransactionType
from periods import MonthKey
from ratelimit import FixedWindowRateLimiter, RateLimiter
from schemas import (
    AnalysisRequest,
    AnalysisResultOut,
    BulkCopyRequest,
    BulkCopyResult,
    CategoryBreakdown,
    CategoryOut,
    DataCheck,
    ExpenseIn,
    IncomeIn,
    MonthlyData,
    MonthlyTrend,
    SubCategoryIn,
    SubCategoryOut,
    Summary,
    TransactionRecord,
)
from seed import seed_default_categories
from services import CategoryService, TransactionService
from store import SqlCategoryDirectory, SqlTransactionStore, to_record

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Kakeibo")

_dashboard_service: Optional[DashboardService] = None
_rate_limiter: Optional[RateLimiter] = None


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user_id(request: Request) -> str:
    token = request.headers.get("X-Session-Token") or request.cookies.get("session")
    try:
        return resolve_user_id(token)
    except Unauthenticated as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def get_dashboard_service() -> DashboardService:
    global _dashboard_service
    if _dashboard_service is None:
        _dashboard_service = DashboardService(
            SqlTransactionStore(), SqlCategoryDirectory()
        )
    return _dashboard_service


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        settings = get_settings()
        _rate_limiter = FixedWindowRateLimiter(
            settings.analysis_rate_limit, settings.analysis_rate_window_secs
        )
    return _rate_limiter


def get_text_generator() -> TextGenerator:
    return ChatCompletionGenerator()


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        created = seed_default_categories(session)
    logger.info(f"startup: default_categories_created={created}")


def error_status(exc: AggregationError) -> int:
    if isinstance(exc, Unauthenticated):
        return 401
    if isinstance(exc, (InsufficientData, InvalidPeriod)):
        return 400
    if isinstance(exc, DataFetchError):
        return 502
    return 500


def unwrap(outcome: Outcome):
    if outcome.error is not None:
        raise HTTPException(
            status_code=error_status(outcome.error), detail=str(outcome.error)
        )
    return outcome.data


def month_query(
    year: int = Query(..., ge=1970, le=3000),
    month: int = Query(..., ge=1, le=12),
) -> tuple[int, int]:
    return year, month


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/api/dashboard", response_model=MonthlyData)
async def api_dashboard(
    ym: tuple[int, int] = Depends(month_query),
    user_id: str = Depends(current_user_id),
    service: DashboardService = Depends(get_dashboard_service),
):
    year, month = ym
    return unwrap(await service.get_monthly_dashboard_data(user_id, year, month))


@app.get("/api/summary", response_model=Summary)
async def api_summary(
    ym: tuple[int, int] = Depends(month_query),
    user_id: str = Depends(current_user_id),
    service: DashboardService = Depends(get_dashboard_service),
):
    year, month = ym
    return unwrap(await service.compute_summary(user_id, year, month))


@app.get("/api/trend", response_model=MonthlyTrend)
async def api_trend(
    ym: tuple[int, int] = Depends(month_query),
    window: Optional[int] = Query(None, ge=1, le=36),
    user_id: str = Depends(current_user_id),
    service: DashboardService = Depends(get_dashboard_service),
):
    year, month = ym
    return unwrap(await service.compute_trend(user_id, year, month, window))


@app.get("/api/breakdown", response_model=list[CategoryBreakdown])
def api_breakdown(
    type: TransactionType = TransactionType.expense,
    ym: tuple[int, int] = Depends(month_query),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    year, month = ym
    rows = TransactionService(db, type, user_id).list_month(year, month)
    return compute_breakdown(rows)


@app.get("/api/categories", response_model=list[CategoryOut])
def api_categories(
    type: TransactionType,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return CategoryService(db, user_id).list_for_type(type)


@app.post("/api/sub-categories", response_model=SubCategoryOut, status_code=201)
def api_add_sub_category(
    data: SubCategoryIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return CategoryService(db, user_id).add_sub_category(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/sub-categories/{sub_category_id}", status_code=204)
def api_delete_sub_category(
    sub_category_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        CategoryService(db, user_id).delete_sub_category(sub_category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc


def _list_month(db: Session, kind: TransactionType, user_id: str, year: int, month: int):
    rows = TransactionService(db, kind, user_id).list_month(year, month)
    return [to_record(row) for row in rows]


def _create(db: Session, kind: TransactionType, user_id: str, data):
    try:
        return to_record(TransactionService(db, kind, user_id).create(data))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _update(db: Session, kind: TransactionType, user_id: str, txn_id: str, data):
    service = TransactionService(db, kind, user_id)
    try:
        service.get(txn_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    try:
        return to_record(service.update(txn_id, data))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _delete(db: Session, kind: TransactionType, user_id: str, txn_id: str) -> None:
    try:
        TransactionService(db, kind, user_id).delete(txn_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc


@app.get("/api/incomes", response_model=list[TransactionRecord])
def api_incomes(
    ym: tuple[int, int] = Depends(month_query),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    year, month = ym
    return _list_month(db, TransactionType.income, user_id, year, month)


@app.get("/api/incomes/recent", response_model=list[TransactionRecord])
def api_recent_incomes(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    rows = TransactionService(db, TransactionType.income, user_id).recent(limit)
    return [to_record(row) for row in rows]


@app.post("/api/incomes", response_model=TransactionRecord, status_code=201)
def api_create_income(
    data: IncomeIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _create(db, TransactionType.income, user_id, data)


@app.put("/api/incomes/{income_id}", response_model=TransactionRecord)
def api_update_income(
    income_id: str,
    data: IncomeIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _update(db, TransactionType.income, user_id, income_id, data)


@app.delete("/api/incomes/{income_id}", status_code=204)
def api_delete_income(
    income_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    _delete(db, TransactionType.income, user_id, income_id)


@app.get("/api/expenses", response_model=list[TransactionRecord])
def api_expenses(
    ym: tuple[int, int] = Depends(month_query),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    year, month = ym
    return _list_month(db, TransactionType.expense, user_id, year, month)


@app.get("/api/expenses/recent", response_model=list[TransactionRecord])
def api_recent_expenses(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    rows = TransactionService(db, TransactionType.expense, user_id).recent(limit)
    return [to_record(row) for row in rows]


@app.post("/api/expenses", response_model=TransactionRecord, status_code=201)
def api_create_expense(
    data: ExpenseIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _create(db, TransactionType.expense, user_id, data)


@app.put("/api/expenses/{expense_id}", response_model=TransactionRecord)
def api_update_expense(
    expense_id: str,
    data: ExpenseIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _update(db, TransactionType.expense, user_id, expense_id, data)


@app.post("/api/expenses/{expense_id}/paid", response_model=TransactionRecord)
def api_set_expense_paid(
    expense_id: str,
    paid: bool = True,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, TransactionType.expense, user_id).set_paid(
            expense_id, paid
        )
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    return to_record(txn)


@app.post("/api/expenses/bulk", response_model=BulkCopyResult, status_code=201)
def api_bulk_copy_expenses(
    data: BulkCopyRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    target = MonthKey(data.target_year, data.target_month)
    service = TransactionService(db, TransactionType.expense, user_id)
    try:
        copies = service.bulk_copy(target, data.items)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    return BulkCopyResult(
        count=len(copies), month=str(target), items=[to_record(c) for c in copies]
    )


@app.delete("/api/expenses/{expense_id}", status_code=204)
def api_delete_expense(
    expense_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    _delete(db, TransactionType.expense, user_id, expense_id)


@app.post("/api/analysis", response_model=AnalysisResultOut)
def api_analysis(
    data: AnalysisRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
    generator: TextGenerator = Depends(get_text_generator),
):
    if not limiter.hit(user_id):
        logger.info(f"analysis_rate_limited: user={user_id}")
        raise HTTPException(status_code=429, detail="Too many requests")
    service = AnalysisService(db, user_id, generator)
    try:
        return service.analyze(data.months)
    except InsufficientData as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except AnalysisUnavailable as exc:
        logger.exception(f"analysis_failed: user={user_id}")
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.post("/api/analysis/check-data", response_model=DataCheck)
def api_analysis_check_data(
    months: int = Query(3, ge=1, le=24),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return AnalysisService(db, user_id).check_data(months)


@app.get("/api/analysis/history", response_model=list[AnalysisResultOut])
def api_analysis_history(
    limit: int = Query(12, ge=1, le=100),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return AnalysisService(db, user_id).history(limit)
