"""Return snapshots and resubmission change detection."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from insurance_engine.models import Application, utcnow


class PayloadError(ValueError):
    """Raised when application content is not made of plain serializable values."""

    def __init__(self, path: str, value: Any):
        self.path = path
        super().__init__(
            f"Unsupported value of type {type(value).__name__} at '{path}'; "
            "application data must contain only dicts, lists, strings, numbers, "
            "booleans and null"
        )


def clone_payload(value: Any, path: str = "data") -> Any:
    """Structural copy of a plain payload.

    Only dicts with string keys, lists, tuples, str, int, float, bool and
    None are accepted, so a copy shares no mutable state with its source.

    Raises:
        PayloadError: On any other type
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Decimal):
        # Decimals come in through JSON number parsing in some drivers
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        copied = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise PayloadError(f"{path}.{key!r}", key)
            copied[key] = clone_payload(item, f"{path}.{key}")
        return copied
    if isinstance(value, (list, tuple)):
        return [clone_payload(item, f"{path}[{i}]") for i, item in enumerate(value)]
    raise PayloadError(path, value)


def attachment_map(attachments: Iterable[dict[str, Any]] | None) -> dict[str, str | None]:
    """Attachments keyed by file name."""
    return {a.get("file_name"): a.get("file_url") for a in attachments or []}


class ReturnHistoryManager:
    """Snapshots application content on return and detects later edits.

    Entries are created once per return event and never modified; the
    manager only ever builds new lists.
    """

    @staticmethod
    def build_entry(
        application: Application,
        returned_by: UUID,
        reason: str | None,
        returned_at: datetime | None = None,
    ) -> dict[str, Any]:
        """Snapshot of the application as it stands before the return."""
        return {
            "returned_at": (returned_at or utcnow()).isoformat(),
            "returned_by": str(returned_by),
            "reason": reason,
            "data_snapshot": clone_payload(application.data or {}),
            "attachments_snapshot": clone_payload(application.attachments or [], "attachments"),
            "submission_date": (
                application.submission_date.isoformat() if application.submission_date else None
            ),
        }

    @classmethod
    def appended(
        cls,
        application: Application,
        returned_by: UUID,
        reason: str | None,
    ) -> list[dict[str, Any]]:
        """Return history with a new snapshot appended."""
        return [*(application.return_history or []), cls.build_entry(application, returned_by, reason)]

    @staticmethod
    def attachments_changed(
        current: Iterable[dict[str, Any]] | None,
        snapshot: Iterable[dict[str, Any]] | None,
    ) -> bool:
        """Compare attachments by count, file-name set and per-file URL."""
        current = list(current or [])
        snapshot = list(snapshot or [])
        if len(current) != len(snapshot):
            return True
        # map comparison covers both a changed name set and a changed URL
        return attachment_map(current) != attachment_map(snapshot)

    @classmethod
    def has_changes(cls, application: Application) -> bool:
        """Whether a returned application was edited since its last return.

        False unless the application is in ``returned``. Data is compared
        structurally, so dict key order is ignored.
        """
        if application.status != "returned":
            return False
        latest = application.latest_return_entry()
        if latest is None:
            return False

        if cls.attachments_changed(application.attachments, latest.get("attachments_snapshot")):
            return True
        return (application.data or {}) != (latest.get("data_snapshot") or {})

    @staticmethod
    def restored_submission_date(application: Application) -> datetime | None:
        """Submission date preserved by the latest return, if any."""
        latest = application.latest_return_entry()
        if latest is None or not latest.get("submission_date"):
            return None
        return datetime.fromisoformat(latest["submission_date"])
