import json
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from analysis import AnalysisService, AnalysisUnavailable, ChatCompletionGenerator
from database import Base
from errors import InsufficientData
from models import Category, Expense, Income, TransactionType
from ratelimit import FixedWindowRateLimiter
from schemas import AnalysisInsights, MonthlyFigures


INSIGHTS = {
    "trends": ["Food spending fell"],
    "comparisons": {
        "income": {"current": 300000, "previous": 280000, "diff": 7.1},
        "expense": {"current": 90000, "previous": 100000, "diff": -10.0},
    },
    "suggestions": [{"title": "Keep it up", "content": "Cook at home."}],
}


class FakeGenerator:
    def __init__(self) -> None:
        self.received: list[MonthlyFigures] = []

    def generate(self, figures):
        self.received = list(figures)
        return AnalysisInsights.model_validate(INSIGHTS)


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = Session(engine)
    session.add_all(
        [
            Category(id="salary", name="Salary", type=TransactionType.income),
            Category(id="food", name="Food", type=TransactionType.expense),
        ]
    )
    session.commit()
    return session


def _add_month(session: Session, user_id: str, on: date, income: int, expense: int) -> None:
    session.add_all(
        [
            Income(user_id=user_id, title="Pay", amount=income, date=on, category_id="salary"),
            Expense(user_id=user_id, title="Food", amount=expense, date=on, category_id="food"),
        ]
    )
    session.commit()


def test_check_data_counts_months_the_same_way_as_analyze() -> None:
    session = make_session()
    today = date(2025, 2, 20)
    _add_month(session, "user-a", date(2025, 1, 5), 100, 10)
    _add_month(session, "user-a", date(2025, 1, 25), 100, 10)
    _add_month(session, "user-a", date(2024, 6, 5), 100, 10)
    _add_month(session, "user-b", date(2025, 2, 5), 100, 10)

    check = AnalysisService(session, "user-a", FakeGenerator()).check_data(
        3, today=today
    )
    assert check.months == 1
    assert check.has_enough is False

    session.add(
        Expense(
            user_id="user-a",
            title="Food",
            amount=10,
            date=date(2025, 2, 3),
            category_id="food",
        )
    )
    session.commit()
    service = AnalysisService(session, "user-a", FakeGenerator())
    check = service.check_data(3, today=today)
    assert check.months == 2
    assert check.has_enough is True
    assert len(service.analyze(3, today=today).insights["trends"]) == 1


def test_monthly_figures_cover_only_months_with_data() -> None:
    session = make_session()
    _add_month(session, "user-a", date(2025, 1, 5), 300_000, 100_000)
    _add_month(session, "user-a", date(2025, 3, 5), 280_000, 90_000)
    _add_month(session, "user-a", date(2024, 10, 5), 1, 1)

    figures = AnalysisService(session, "user-a", FakeGenerator()).monthly_figures(
        3, today=date(2025, 3, 20)
    )

    assert [f.month for f in figures] == ["2025-01", "2025-03"]
    assert figures[1].balance == 190_000


def test_analyze_requires_two_months() -> None:
    session = make_session()
    _add_month(session, "user-a", date(2025, 3, 5), 280_000, 90_000)

    with pytest.raises(InsufficientData) as excinfo:
        AnalysisService(session, "user-a", FakeGenerator()).analyze(
            3, today=date(2025, 3, 20)
        )
    assert excinfo.value.months == 1
    assert excinfo.value.required == 2


def test_analyze_persists_result_and_history_is_user_scoped() -> None:
    session = make_session()
    _add_month(session, "user-a", date(2025, 2, 5), 280_000, 100_000)
    _add_month(session, "user-a", date(2025, 3, 5), 300_000, 90_000)
    generator = FakeGenerator()

    result = AnalysisService(session, "user-a", generator).analyze(
        3, today=date(2025, 3, 20)
    )

    assert result.insights["trends"] == ["Food spending fell"]
    assert [f.month for f in generator.received] == ["2025-02", "2025-03"]
    assert len(AnalysisService(session, "user-a", generator).history()) == 1
    assert AnalysisService(session, "user-b", generator).history() == []


def test_chat_payload_sends_latest_two_months() -> None:
    generator = ChatCompletionGenerator(api_url="http://example.invalid", model="m")
    figures = [
        MonthlyFigures(month="2025-01", income=1, expense=1, balance=0),
        MonthlyFigures(month="2025-02", income=2, expense=1, balance=1),
        MonthlyFigures(month="2025-03", income=3, expense=1, balance=2),
    ]

    payload = generator.build_payload(figures)

    assert payload["model"] == "m"
    assert payload["response_format"] == {"type": "json_object"}
    data = json.loads(payload["messages"][1]["content"].split("\n", 1)[1])
    assert data["current_month"]["month"] == "2025-03"
    assert data["previous_month"]["month"] == "2025-02"


def test_generator_without_endpoint_is_unavailable() -> None:
    generator = ChatCompletionGenerator(api_url="", model="m")
    generator.api_url = None

    with pytest.raises(AnalysisUnavailable):
        generator.generate([MonthlyFigures(month="2025-01", income=1, expense=1, balance=0)])


def test_fixed_window_rate_limiter() -> None:
    now = [0.0]
    limiter = FixedWindowRateLimiter(limit=2, window_secs=60, clock=lambda: now[0])

    assert limiter.hit("user-a") is True
    assert limiter.hit("user-a") is True
    assert limiter.hit("user-a") is False
    assert limiter.hit("user-b") is True

    now[0] = 61.0
    assert limiter.hit("user-a") is True


def test_rate_limiter_drops_expired_windows() -> None:
    now = [0.0]
    limiter = FixedWindowRateLimiter(limit=1, window_secs=60, clock=lambda: now[0])
    for key in ("user-a", "user-b", "user-c"):
        limiter.hit(key)

    now[0] = 120.0
    assert limiter.hit("user-d") is True

    assert list(limiter._records) == ["user-d"]
