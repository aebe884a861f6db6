"""Custom exception hierarchy for airfusion."""

from __future__ import annotations

from airfusion.models.measurement import RejectionReason


class FusionError(Exception):
    """Base exception for all airfusion errors."""


class FusionConfigError(FusionError):
    """Invalid or inconsistent configuration.

    Raised when a :class:`airfusion.config.FusionConfig` is built, before
    any refresh cycle runs.
    """


class SourceUnavailableError(FusionError):
    """A connector could not deliver data (timeout, connection, non-200)."""

    def __init__(
        self,
        message: str,
        *,
        source_id: str = "",
        status_code: int | None = None,
    ) -> None:
        self.source_id = source_id
        self.status_code = status_code
        super().__init__(message)


class MalformedMeasurementError(FusionError):
    """A candidate record failed validation at the normalization boundary.

    The normalizer converts this into a counted
    :class:`airfusion.models.Rejection`; it never escapes a batch.
    """

    def __init__(self, message: str, *, reason: RejectionReason = RejectionReason.MALFORMED) -> None:
        self.reason = reason
        super().__init__(message)


class RefreshError(FusionError):
    """A refresh cycle produced no usable result.

    The snapshot cache catches this and serves the previous snapshot
    flagged stale (or the "no data yet" snapshot).
    """


class DispatchError(FusionError):
    """Delivery of an alert transition to a subscriber failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
