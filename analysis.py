from __future__ import annotations

import json
import logging
from datetime import date
from typing import Optional, Protocol, Sequence
from urllib.error import URLError
from urllib.request import Request, urlopen

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from aggregation import count_distinct_months
from config import get_settings
from errors import InsufficientData, Unauthenticated
from models import AnalysisResult, TRANSACTION_MODELS, TransactionType
from periods import MonthKey, local_today, trend_window, window_period
from schemas import AnalysisInsights, DataCheck, MonthlyFigures


logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "Analyse the household ledger data and answer with a JSON object of the form "
    '{"trends": [string], "comparisons": {"income": {"current": number, '
    '"previous": number, "diff": number}, "expense": {"current": number, '
    '"previous": number, "diff": number}}, "suggestions": [{"title": string, '
    '"content": string}]}. All amounts are in yen; diff is a percentage.'
)


class AnalysisUnavailable(RuntimeError):
    pass


class TextGenerator(Protocol):
    def generate(self, figures: Sequence[MonthlyFigures]) -> AnalysisInsights: ...


class ChatCompletionGenerator:
    """Asks an OpenAI-compatible chat completion endpoint for a JSON analysis."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.api_url = api_url or settings.analysis_api_url
        self.api_key = api_key or settings.analysis_api_key
        self.model = model or settings.analysis_model
        self.timeout = timeout or settings.analysis_timeout_secs

    def build_payload(self, figures: Sequence[MonthlyFigures]) -> dict[str, object]:
        latest = list(figures)[-2:]
        prompt_data = {
            "current_month": latest[-1].model_dump(),
            "previous_month": latest[0].model_dump(),
        }
        return {
            "model": self.model,
            "temperature": 0.5,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": "Data:\n"
                    + json.dumps(prompt_data, ensure_ascii=False, indent=2),
                },
            ],
        }

    def generate(self, figures: Sequence[MonthlyFigures]) -> AnalysisInsights:
        if not self.api_url:
            raise AnalysisUnavailable("Analysis endpoint is not configured")
        body = json.dumps(self.build_payload(figures)).encode("utf-8")
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        req = Request(self.api_url, data=body, headers=headers, method="POST")
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except (URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise AnalysisUnavailable("Failed to reach analysis endpoint") from exc

        try:
            content = payload["choices"][0]["message"]["content"]
            return AnalysisInsights.model_validate(json.loads(content))
        except (KeyError, IndexError, TypeError, ValueError, ValidationError) as exc:
            raise AnalysisUnavailable("Unexpected analysis response") from exc


class AnalysisService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[str],
        generator: Optional[TextGenerator] = None,
    ) -> None:
        if not user_id:
            raise Unauthenticated()
        self.session = session
        self.user_id = user_id
        self.generator = generator or ChatCompletionGenerator()
        self.min_months = get_settings().analysis_min_months

    def _window_rows(self, months: int, today: Optional[date]) -> list[tuple]:
        """(kind, date, amount) rows of the last `months` months, this one included."""
        window = trend_window(MonthKey.of(today or local_today()), months)
        period = window_period(window)
        rows = []
        for kind, model in TRANSACTION_MODELS.items():
            stmt = select(model.date, model.amount).where(
                model.user_id == self.user_id,
                model.date.between(period.start, period.end),
            )
            rows.extend(
                (kind, row.date, row.amount) for row in self.session.execute(stmt)
            )
        return rows

    def check_data(
        self, months: int = 3, *, today: Optional[date] = None
    ) -> DataCheck:
        """Counts months with any income or expense, as `analyze` does."""
        rows = self._window_rows(months, today)
        found = count_distinct_months(on for _, on, _ in rows)
        return DataCheck(has_enough=found >= self.min_months, months=found)

    def monthly_figures(
        self, months: int, *, today: Optional[date] = None
    ) -> list[MonthlyFigures]:
        """Per-month totals for months that have any rows, oldest first."""
        totals: dict[MonthKey, dict[TransactionType, int]] = {}
        for kind, on, amount in self._window_rows(months, today):
            bucket = totals.setdefault(
                MonthKey.of(on),
                {TransactionType.income: 0, TransactionType.expense: 0},
            )
            bucket[kind] += int(amount)
        return [
            MonthlyFigures(
                month=str(key),
                income=values[TransactionType.income],
                expense=values[TransactionType.expense],
                balance=values[TransactionType.income]
                - values[TransactionType.expense],
            )
            for key, values in sorted(totals.items())
        ]

    def analyze(self, months: int = 3, *, today: Optional[date] = None) -> AnalysisResult:
        figures = self.monthly_figures(months, today=today)
        if len(figures) < self.min_months:
            raise InsufficientData(len(figures), self.min_months)
        insights = self.generator.generate(figures)
        result = AnalysisResult(
            user_id=self.user_id,
            type="monthly",
            insights=insights.model_dump(),
        )
        self.session.add(result)
        self.session.commit()
        self.session.refresh(result)
        logger.info(
            f"analysis_saved: user={self.user_id} id={result.id} months={len(figures)}"
        )
        return result

    def history(self, limit: int = 12) -> list[AnalysisResult]:
        stmt = (
            select(AnalysisResult)
            .where(
                AnalysisResult.user_id == self.user_id,
                AnalysisResult.type == "monthly",
            )
            .order_by(AnalysisResult.analysis_date.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()
