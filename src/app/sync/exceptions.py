"""Error taxonomy for contact synchronization.

Every error carries a machine-readable code and the HTTP status the API
layer should answer with. Per-record failures (RecordWriteFailure) never
escape the batch loop; they are downgraded to skipped rows.
"""

from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Base class for all sync errors.

    Attributes:
        message: Human-readable description.
        code: Stable machine-readable error code.
        status_code: HTTP status for the API layer.
        details: Optional structured context.
    """

    code = "sync_error"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class MissingRequiredField(SyncError):
    """The source has no column that resolves to the phone number."""

    code = "missing_required_field"
    status_code = 422

    def __init__(self, field: str = "phone", headers: list[str] | None = None) -> None:
        self.field = field
        super().__init__(
            "No phone number column found in sheet" if field == "phone"
            else f"No {field} column found in source",
            details={"field": field, "headers": headers or []},
        )


class ReadFailure(SyncError):
    """The source adapter could not fetch records."""

    code = "read_failure"
    status_code = 502


class RecordWriteFailure(SyncError):
    """A single record could not be inserted or updated.

    Attributes:
        row_label: Position of the record for error messages ("Row 12").
    """

    code = "record_write_failure"
    status_code = 500

    def __init__(self, row_label: str, reason: str) -> None:
        self.row_label = row_label
        self.reason = reason
        super().__init__(f"{row_label}: {reason}")


class RunAborted(SyncError):
    """An unexpected error escaped the batch loop; partial counters survive."""

    code = "run_aborted"
    status_code = 500


class OutboundNotAllowed(SyncError):
    """The link direction does not permit writing to the external system."""

    code = "outbound_not_allowed"
    status_code = 409


class LinkNotFound(SyncError):
    code = "link_not_found"
    status_code = 404


class LinkInactive(SyncError):
    """The link was deactivated and can no longer be synced."""

    code = "link_inactive"
    status_code = 409


class IntegrationNotFound(SyncError):
    code = "integration_not_found"
    status_code = 404


class RunInProgress(SyncError):
    """Another run for the same link has not finished yet."""

    code = "run_in_progress"
    status_code = 409


class ContactNotFound(SyncError):
    code = "contact_not_found"
    status_code = 404


class InvalidLinkRequest(SyncError):
    """A link names an object the provider cannot sync (unknown object type or tab)."""

    code = "invalid_link_request"
    status_code = 422
