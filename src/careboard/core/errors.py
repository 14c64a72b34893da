"""Error taxonomy for the monitoring engine.

Callers distinguish four outcomes besides success:

* ``InvalidInputError``: rejected at the boundary (bad metric type, value,
  unit, date range). Never silently coerced.
* ``NotFoundError``: the subject, sample, or alert does not exist.
* ``ForbiddenError``: the caller may not act on this subject's data.
* ``UnavailableError``: the store is unreachable or a rollup exceeded its
  time budget. Retryable; the dashboards' polling cadence is the retry loop.
"""

from __future__ import annotations


class MonitoringError(Exception):
    """Base exception for monitoring engine errors."""

    kind = "error"
    retryable = False

    def to_dict(self) -> dict:
        """Return the error as a JSON-serializable payload for tool responses."""
        payload = {
            "status": "error",
            "error": self.kind,
            "message": str(self),
        }
        if self.retryable:
            payload["retryable"] = True
        return payload


class InvalidInputError(MonitoringError):
    """Input failed validation."""

    kind = "invalid_input"


class InvalidMetricTypeError(InvalidInputError):
    """Metric type is not one of the accepted types."""


class InvalidValueError(InvalidInputError):
    """Metric value is not a finite number."""


class InvalidDateRangeError(InvalidInputError):
    """Period token or explicit window is malformed."""


class RangeTableError(InvalidInputError):
    """The range table configuration could not be loaded."""


class NotFoundError(MonitoringError):
    """Subject, sample, or alert does not exist."""

    kind = "not_found"


class ForbiddenError(MonitoringError):
    """Caller lacks permission for the requested subject's data."""

    kind = "forbidden"


class UnavailableError(MonitoringError):
    """Underlying store unreachable or computation over budget."""

    kind = "unavailable"
    retryable = True


class StoreUnavailableError(UnavailableError):
    """The sample or alert store could not be read or written."""


class RollupTimeoutError(UnavailableError):
    """A fleet rollup did not finish within its time budget."""
