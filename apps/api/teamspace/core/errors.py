from __future__ import annotations


class WorkspaceError(Exception):
    """Base error for workspace persistence and validation failures."""


class TransportError(WorkspaceError):
    """Raised when the remote store cannot be reached or the call times out."""


class RemoteError(WorkspaceError):
    """Raised when the remote store answers with a non-2xx status."""

    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self.body = body
        super().__init__(f"Remote store returned {status}: {body[:200]}")


class NotFoundError(WorkspaceError):
    def __init__(self, resource: str, entity_id: str) -> None:
        self.resource = resource
        self.entity_id = entity_id
        super().__init__(f"{resource} '{entity_id}' not found")


class ValidationError(WorkspaceError):
    def __init__(self, message: str, field: str | None = None) -> None:
        self.message = message
        self.field = field
        super().__init__(message)
