from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from teamspace.core.errors import NotFoundError, RemoteError, ValidationError
from teamspace.persistence.gateway import PersistenceGateway
from teamspace.workspace.context import WorkspaceContext
from teamspace.workspace.mentions import extract_mentions
from teamspace.workspace.schemas import (
    EmailTemplateCreate,
    EmailTemplateRead,
    EmailTemplateUpdate,
    NotificationCreate,
    NotificationRead,
    NotificationUpdate,
    ProjectCreate,
    ProjectDocumentCreate,
    ProjectDocumentRead,
    ProjectDocumentUpdate,
    ProjectMemberCreate,
    ProjectMemberRead,
    ProjectMemberUpdate,
    ProjectNoteCreate,
    ProjectNoteRead,
    ProjectNoteUpdate,
    ProjectRead,
    ProjectUpdate,
    TaskCommentCreate,
    TaskCommentRead,
    TaskCommentUpdate,
    TaskCreate,
    TaskRead,
    TaskUpdate,
    TeamActivityCreate,
    TeamActivityRead,
)


CreateT = TypeVar("CreateT", bound=BaseModel)
UpdateT = TypeVar("UpdateT", bound=BaseModel)
ReadT = TypeVar("ReadT", bound=BaseModel)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _first_error(exc: SchemaValidationError) -> ValidationError:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error.get("loc", ())) or None
    return ValidationError(error.get("msg", "invalid payload"), field)


def _require_text(payload: Mapping[str, Any], field: str) -> None:
    if field in payload and not str(payload[field] or "").strip():
        raise ValidationError(f"{field} is required", field)


def _require_range(payload: Mapping[str, Any], field: str, low: int, high: int) -> None:
    value = payload.get(field)
    if field in payload and (value is None or not low <= value <= high):
        raise ValidationError(f"{field} must be between {low} and {high}", field)


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


class EntityStore(Generic[CreateT, UpdateT, ReadT]):
    """CRUD over one entity collection, routed through the persistence gateway."""

    collection: ClassVar[str]
    resource: ClassVar[str]
    create_model: type[CreateT]
    update_model: type[UpdateT]
    read_model: type[ReadT]
    array_fields: ClassVar[frozenset[str]] = frozenset()

    def __init__(self, context: WorkspaceContext) -> None:
        self.context = context

    @property
    def gateway(self) -> PersistenceGateway:
        return self.context.gateway

    async def create(self, dto: CreateT | Mapping[str, Any]) -> ReadT:
        payload = self._dump(dto, self.create_model, exclude_unset=False)
        payload = self.prepare_create(payload)
        rows = await self.gateway.request(self.collection, "POST", payload)
        if not rows:
            raise RemoteError(200, f"{self.collection} insert returned no representation")
        return self.read_model.model_validate(rows[0])

    async def list(
        self,
        filters: Mapping[str, Any] | None = None,
        *,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[ReadT]:
        rows = await self.gateway.request(self.collection, "GET", params=self.build_params(filters, order, limit))
        return [self.read_model.model_validate(row) for row in rows]

    async def get(self, entity_id: str) -> ReadT:
        rows = await self.gateway.request(f"{self.collection}/{entity_id}", "GET")
        if not rows:
            raise NotFoundError(self.resource, entity_id)
        return self.read_model.model_validate(rows[0])

    async def find(self, entity_id: str) -> ReadT | None:
        try:
            return await self.get(entity_id)
        except NotFoundError:
            return None

    async def update(self, entity_id: str, dto: UpdateT | Mapping[str, Any]) -> ReadT:
        payload = self._dump(dto, self.update_model, exclude_unset=True)
        if not payload:
            return await self.get(entity_id)
        self.reject_nulls(payload)
        payload = self.prepare_update(payload)
        payload["updated_at"] = utcnow().isoformat()
        rows = await self.gateway.request(f"{self.collection}/{entity_id}", "PATCH", payload)
        if not rows:
            raise NotFoundError(self.resource, entity_id)
        return self.read_model.model_validate(rows[0])

    async def delete(self, entity_id: str) -> None:
        # Deleting an id that is already gone is a no-op on both backends.
        await self.gateway.request(f"{self.collection}/{entity_id}", "DELETE")

    async def delete_where(self, filters: Mapping[str, Any]) -> int:
        params = self.build_params(filters, None, None)
        if not params:
            raise ValidationError("delete_where requires at least one filter")
        rows = await self.gateway.request(self.collection, "DELETE", params=params)
        return len(rows)

    async def update_where(self, filters: Mapping[str, Any], dto: UpdateT | Mapping[str, Any]) -> list[ReadT]:
        params = self.build_params(filters, None, None)
        if not params:
            raise ValidationError("update_where requires at least one filter")
        payload = self._dump(dto, self.update_model, exclude_unset=True)
        self.reject_nulls(payload)
        payload = self.prepare_update(payload)
        payload["updated_at"] = utcnow().isoformat()
        rows = await self.gateway.request(self.collection, "PATCH", payload, params=params)
        return [self.read_model.model_validate(row) for row in rows]

    def prepare_create(self, payload: dict[str, Any]) -> dict[str, Any]:
        return payload

    def prepare_update(self, payload: dict[str, Any]) -> dict[str, Any]:
        return payload

    def reject_nulls(self, payload: Mapping[str, Any]) -> None:
        # Only fields whose stored value may be null can be cleared by a patch.
        for field, value in payload.items():
            info = self.read_model.model_fields.get(field)
            if value is None and info is not None and info.default is not None:
                raise ValidationError(f"{field} cannot be null", field)

    def build_params(
        self,
        filters: Mapping[str, Any] | None,
        order: str | None,
        limit: int | None,
    ) -> dict[str, str]:
        params: dict[str, str] = {}
        for field, value in (filters or {}).items():
            if value is None:
                continue
            if field in self.array_fields:
                params[field] = f"cs.{{{value}}}"
            elif isinstance(value, bool):
                params[field] = f"eq.{'true' if value else 'false'}"
            else:
                params[field] = f"eq.{value}"
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        return params

    @staticmethod
    def _dump(dto: BaseModel | Mapping[str, Any], model: type[BaseModel], *, exclude_unset: bool) -> dict[str, Any]:
        if not isinstance(dto, BaseModel):
            try:
                dto = model.model_validate(dict(dto))
            except SchemaValidationError as exc:
                raise _first_error(exc) from exc
        return dto.model_dump(mode="json", exclude_unset=exclude_unset)


class TaskStore(EntityStore[TaskCreate, TaskUpdate, TaskRead]):
    collection = "tasks"
    resource = "task"
    create_model = TaskCreate
    update_model = TaskUpdate
    read_model = TaskRead
    array_fields = frozenset({"assigned_to"})

    def prepare_create(self, payload: dict[str, Any]) -> dict[str, Any]:
        _require_text(payload, "title")
        if not payload.get("assigned_by"):
            raise ValidationError("assigned_by is required", "assigned_by")
        return self._normalize_assignees(payload)

    def prepare_update(self, payload: dict[str, Any]) -> dict[str, Any]:
        _require_text(payload, "title")
        if "assigned_to" in payload:
            return self._normalize_assignees(payload)
        return payload

    @staticmethod
    def _normalize_assignees(payload: dict[str, Any]) -> dict[str, Any]:
        assignees = _unique([user_id for user_id in payload.get("assigned_to") or [] if user_id])
        if not assignees:
            raise ValidationError("a task needs at least one assignee", "assigned_to")
        payload["assigned_to"] = assignees
        return payload


class ProjectStore(EntityStore[ProjectCreate, ProjectUpdate, ProjectRead]):
    collection = "projects"
    resource = "project"
    create_model = ProjectCreate
    update_model = ProjectUpdate
    read_model = ProjectRead

    def prepare_create(self, payload: dict[str, Any]) -> dict[str, Any]:
        _require_text(payload, "title")
        if not payload.get("owner_id"):
            raise ValidationError("owner_id is required", "owner_id")
        return self.prepare_update(payload)

    def prepare_update(self, payload: dict[str, Any]) -> dict[str, Any]:
        _require_text(payload, "title")
        _require_range(payload, "probability", 0, 100)
        _require_range(payload, "progress", 0, 100)
        return payload


class ProjectMemberStore(EntityStore[ProjectMemberCreate, ProjectMemberUpdate, ProjectMemberRead]):
    collection = "project_members"
    resource = "project member"
    create_model = ProjectMemberCreate
    update_model = ProjectMemberUpdate
    read_model = ProjectMemberRead

    async def create(self, dto: ProjectMemberCreate | Mapping[str, Any]) -> ProjectMemberRead:
        payload = self._dump(dto, self.create_model, exclude_unset=False)
        existing = await self.list({"project_id": payload["project_id"], "user_id": payload["user_id"]})
        if existing:
            raise ValidationError(f"{payload['user_id']} is already a member of this project", "user_id")
        return await super().create(payload)


class ProjectDocumentStore(EntityStore[ProjectDocumentCreate, ProjectDocumentUpdate, ProjectDocumentRead]):
    collection = "project_documents"
    resource = "project document"
    create_model = ProjectDocumentCreate
    update_model = ProjectDocumentUpdate
    read_model = ProjectDocumentRead

    def prepare_create(self, payload: dict[str, Any]) -> dict[str, Any]:
        _require_text(payload, "name")
        _require_text(payload, "url")
        return payload


class _MentioningStore(EntityStore[CreateT, UpdateT, ReadT]):
    array_fields = frozenset({"mentions"})

    def prepare_create(self, payload: dict[str, Any]) -> dict[str, Any]:
        _require_text(payload, "content")
        payload["mentions"] = extract_mentions(payload["content"], self.context.roster)
        return payload

    def prepare_update(self, payload: dict[str, Any]) -> dict[str, Any]:
        if "content" in payload:
            return self.prepare_create(payload)
        return payload


class ProjectNoteStore(_MentioningStore[ProjectNoteCreate, ProjectNoteUpdate, ProjectNoteRead]):
    collection = "project_notes"
    resource = "project note"
    create_model = ProjectNoteCreate
    update_model = ProjectNoteUpdate
    read_model = ProjectNoteRead


class TaskCommentStore(_MentioningStore[TaskCommentCreate, TaskCommentUpdate, TaskCommentRead]):
    collection = "task_comments"
    resource = "task comment"
    create_model = TaskCommentCreate
    update_model = TaskCommentUpdate
    read_model = TaskCommentRead


class EmailTemplateStore(EntityStore[EmailTemplateCreate, EmailTemplateUpdate, EmailTemplateRead]):
    collection = "email_templates"
    resource = "email template"
    create_model = EmailTemplateCreate
    update_model = EmailTemplateUpdate
    read_model = EmailTemplateRead

    def prepare_create(self, payload: dict[str, Any]) -> dict[str, Any]:
        if not payload.get("created_by"):
            raise ValidationError("created_by is required", "created_by")
        return self.prepare_update(payload)

    def prepare_update(self, payload: dict[str, Any]) -> dict[str, Any]:
        _require_text(payload, "name")
        _require_text(payload, "subject")
        if payload.get("variables") is not None:
            payload["variables"] = _unique([name.strip() for name in payload["variables"] if name.strip()])
        return payload


class NotificationStore(EntityStore[NotificationCreate, NotificationUpdate, NotificationRead]):
    collection = "notifications"
    resource = "notification"
    create_model = NotificationCreate
    update_model = NotificationUpdate
    read_model = NotificationRead


class ActivityLogStore(EntityStore[TeamActivityCreate, BaseModel, TeamActivityRead]):
    """Backing collection of the activity log; written only by ActivityRecorder."""

    collection = "team_activity"
    resource = "activity"
    create_model = TeamActivityCreate
    update_model = BaseModel
    read_model = TeamActivityRead
    array_fields = frozenset({"mentioned_users"})

    def prepare_create(self, payload: dict[str, Any]) -> dict[str, Any]:
        mentioned = payload.get("mentioned_users")
        payload["mentioned_users"] = _unique(mentioned) if mentioned else None
        return payload

    async def update(self, entity_id: str, dto: Any) -> TeamActivityRead:
        raise ValidationError("activity records are append-only")

    async def delete(self, entity_id: str) -> None:
        raise ValidationError("activity records are append-only")
