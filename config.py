import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        store_timeout_secs: float,
        trend_window: int,
        analysis_api_url: Optional[str],
        analysis_api_key: Optional[str],
        analysis_model: str,
        analysis_timeout_secs: float,
        analysis_min_months: int,
        analysis_rate_limit: int,
        analysis_rate_window_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.store_timeout_secs = store_timeout_secs
        self.trend_window = trend_window
        self.analysis_api_url = analysis_api_url
        self.analysis_api_key = analysis_api_key
        self.analysis_model = analysis_model
        self.analysis_timeout_secs = analysis_timeout_secs
        self.analysis_min_months = analysis_min_months
        self.analysis_rate_limit = analysis_rate_limit
        self.analysis_rate_window_secs = analysis_rate_window_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("KAKEIBO_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "kakeibo.db"
    database_url = os.getenv("KAKEIBO_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("KAKEIBO_TIMEZONE", "Asia/Tokyo")
    session_secret = os.getenv(
        "KAKEIBO_SESSION_SECRET",
        "3f0c9a61d2b84e7fa5c1e9d07b6a4c2e8f1d3b5a7c9e0f2a4b6c8d0e1f3a5b7c",
    )
    store_timeout_secs = float(os.getenv("KAKEIBO_STORE_TIMEOUT_SECS", "5"))
    trend_window = int(os.getenv("KAKEIBO_TREND_WINDOW", "6"))
    analysis_api_url = os.getenv("KAKEIBO_ANALYSIS_API_URL") or None
    analysis_api_key = os.getenv("KAKEIBO_ANALYSIS_API_KEY") or None
    analysis_model = os.getenv("KAKEIBO_ANALYSIS_MODEL", "deepseek-chat")
    analysis_timeout_secs = float(os.getenv("KAKEIBO_ANALYSIS_TIMEOUT_SECS", "30"))
    analysis_min_months = int(os.getenv("KAKEIBO_ANALYSIS_MIN_MONTHS", "2"))
    analysis_rate_limit = int(os.getenv("KAKEIBO_ANALYSIS_RATE_LIMIT", "5"))
    analysis_rate_window_secs = float(
        os.getenv("KAKEIBO_ANALYSIS_RATE_WINDOW_SECS", "60")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        store_timeout_secs=store_timeout_secs,
        trend_window=trend_window,
        analysis_api_url=analysis_api_url,
        analysis_api_key=analysis_api_key,
        analysis_model=analysis_model,
        analysis_timeout_secs=analysis_timeout_secs,
        analysis_min_months=analysis_min_months,
        analysis_rate_limit=analysis_rate_limit,
        analysis_rate_window_secs=analysis_rate_window_secs,
    )
