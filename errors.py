from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class AggregationError(Exception):
    code = "aggregation_error"


class Unauthenticated(AggregationError):
    code = "unauthenticated"

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class DataFetchError(AggregationError):
    code = "data_fetch_error"


class InvalidPeriod(AggregationError):
    code = "invalid_period"


class InsufficientData(AggregationError):
    code = "insufficient_data"

    def __init__(self, months: int, required: int) -> None:
        super().__init__(
            f"At least {required} months of data are required, found {months}"
        )
        self.months = months
        self.required = required


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Success-or-error result returned across the engine boundary."""

    data: Optional[T] = None
    error: Optional[AggregationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T) -> "Outcome[T]":
        return cls(data=data)

    @classmethod
    def failure(cls, error: AggregationError) -> "Outcome[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.data
