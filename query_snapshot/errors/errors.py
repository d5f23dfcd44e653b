"""
Custom exceptions for query snapshots.

Exception hierarchy:
- QuerySnapshotError (base)
  - SnapshotConfigurationError: snapshot mode used outside a test, invalid config
    - SessionStateError: lifecycle event received in an impossible state
  - SnapshotStoreError: snapshot file content is not a snapshot record
  - BuildOutputError: build output missing or malformed
"""

from __future__ import annotations

from typing import Any, Optional


class QuerySnapshotError(Exception):
    """Base exception for all query snapshot errors."""

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.component:
            parts.append(f"[component={self.component}]")
        if self.details:
            parts.append(f"[details={self.details}]")
        return " ".join(parts)


class SnapshotConfigurationError(QuerySnapshotError):
    """Raised when snapshots are used outside an active test or configured wrongly."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)


class SessionStateError(SnapshotConfigurationError):
    """Raised when a lifecycle event does not fit the current session state."""

    def __init__(
        self,
        message: str,
        *,
        state: Optional[str] = None,
        event: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.state = state
        self.event = event
        details = details or {}
        if state:
            details["state"] = state
        if event:
            details["event"] = event
        super().__init__(message, component=component, details=details)


class SnapshotStoreError(QuerySnapshotError):
    """Raised when a snapshot file cannot be decoded into a record."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.path = path
        details = details or {}
        if path:
            details["path"] = path
        super().__init__(message, component=component, details=details)


class BuildOutputError(QuerySnapshotError):
    """Raised when the static site build output is missing or malformed."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.path = path
        details = details or {}
        if path:
            details["path"] = path
        super().__init__(message, component=component, details=details)
