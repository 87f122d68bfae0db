"""Exception taxonomy shared by the routing, weather, cache and predictor layers."""

from __future__ import annotations


class RouteCastError(Exception):
    """Base class for all RouteCast failures."""


class RouteUnavailable(RouteCastError):
    """The routing provider failed or no path exists between the endpoints."""


class OutOfRangeProgress(RouteCastError):
    """A progress value (fraction, distance or time) lies outside the route."""


class WeatherUnavailable(RouteCastError):
    """The weather provider could not supply a forecast (after retries)."""


class RateLimited(RouteCastError):
    """The weather provider refused the call because of quota; not retried."""

    def __init__(self, message: str = "weather provider rate limit reached",
                 retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class PredictionCancelled(RouteCastError):
    """A newer request for the same session superseded this run."""


class PredictionFailed(RouteCastError):
    """A predictor step failed; `step` names the state the run was in."""

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(f"prediction failed while {step}: {cause}")
        self.step = step
        self.cause = cause

    def to_dict(self) -> dict:
        """Structured failure for API consumers."""
        return {
            "step": self.step,
            "error": type(self.cause).__name__,
            "message": str(self.cause),
        }
