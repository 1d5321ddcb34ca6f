from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from teamspace.context import get_correlation_id
from teamspace.core.errors import NotFoundError, RemoteError, TransportError, ValidationError, WorkspaceError
from teamspace.workspace.context import WorkspaceContext
from teamspace.workspace.directory import CalendarEvent, TeamMember
from teamspace.workspace.export import export_filename
from teamspace.workspace.schemas import (
    ActivityLogRequest,
    ActivityTargetType,
    ContentRequest,
    EmailTemplateCreate,
    EmailTemplateRead,
    EmailTemplateUpdate,
    MentionItem,
    NotificationRead,
    PipelineAnalytics,
    ProjectCreate,
    ProjectDetail,
    ProjectDocumentRead,
    ProjectDocumentRequest,
    ProjectMemberRead,
    ProjectMemberRequest,
    ProjectNoteRead,
    ProjectRead,
    ProjectUpdate,
    SearchResults,
    TaskCommentRead,
    TaskCreate,
    TaskRead,
    TaskUpdate,
    TeamActivityRead,
    TeamPulseEntry,
    UrgentClient,
)
from teamspace.workspace.service import WorkspaceService


logger = logging.getLogger("teamspace.workspace.api")

tasks_router = APIRouter(prefix="/api/workspace", tags=["workspace.tasks"])
projects_router = APIRouter(prefix="/api/workspace", tags=["workspace.projects"])
templates_router = APIRouter(prefix="/api/workspace", tags=["workspace.email_templates"])
activity_router = APIRouter(prefix="/api/workspace", tags=["workspace.activity"])
notifications_router = APIRouter(prefix="/api/workspace", tags=["workspace.notifications"])
dashboard_router = APIRouter(prefix="/api/workspace", tags=["workspace.dashboard"])

DELETED = {"status": "deleted"}


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(code=code, message=message, details=details, correlation_id=correlation_id)
    return JSONResponse(status_code=status_code, content=payload.__dict__)


async def _not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return error_response(
        request,
        status_code=status.HTTP_404_NOT_FOUND,
        code="workspace_not_found",
        message=str(exc),
        details={"resource": exc.resource, "id": exc.entity_id},
    )


async def _validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code="workspace_validation_failed",
        message=exc.message,
        details={"field": exc.field},
    )


async def _remote_handler(request: Request, exc: RemoteError) -> JSONResponse:
    return error_response(
        request,
        status_code=status.HTTP_502_BAD_GATEWAY,
        code="workspace_remote_error",
        message=str(exc),
        details={"status": exc.status},
    )


async def _transport_handler(request: Request, exc: TransportError) -> JSONResponse:
    return error_response(
        request,
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        code="workspace_store_unavailable",
        message=str(exc),
    )


async def _workspace_error_handler(request: Request, exc: WorkspaceError) -> JSONResponse:
    logger.error("workspace.unhandled_error", extra={"error": str(exc)[:500]})
    return error_response(
        request,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="workspace_error",
        message=str(exc),
    )


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code="http_error",
        message=str(exc.detail),
        details=exc.detail,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(NotFoundError, _not_found_handler)
    app.add_exception_handler(ValidationError, _validation_handler)
    app.add_exception_handler(RemoteError, _remote_handler)
    app.add_exception_handler(TransportError, _transport_handler)
    app.add_exception_handler(WorkspaceError, _workspace_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)


def get_workspace_service(request: Request) -> WorkspaceService:
    service = getattr(request.app.state, "workspace_service", None)
    if service is None:
        service = WorkspaceService(WorkspaceContext.create())
        request.app.state.workspace_service = service
    return service


def get_current_member(
    request: Request,
    service: WorkspaceService = Depends(get_workspace_service),
) -> TeamMember:
    user_id = request.headers.get("x-user-id")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing x-user-id header")
    member = service.context.roster.get(user_id)
    if member is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Unknown team member: {user_id}")
    return member


def _csv_response(content: str, kind: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(kind)}"'},
    )


# Tasks


@tasks_router.get("/tasks", response_model=list[TaskRead])
async def list_tasks(
    company_id: str | None = Query(default=None),
    project_id: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> list[TaskRead]:
    return await service.get_tasks({"company_id": company_id, "project_id": project_id, "status": status_filter})


@tasks_router.get("/tasks/mine", response_model=list[TaskRead])
async def list_my_tasks(
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> list[TaskRead]:
    return await service.get_my_tasks(member.id)


@tasks_router.post("/tasks", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
async def create_task(
    dto: TaskCreate,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> TaskRead:
    return await service.add_task(dto, member.id)


@tasks_router.get("/tasks/{task_id}", response_model=TaskRead)
async def get_task(
    task_id: str,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> TaskRead:
    return await service.get_task(task_id)


@tasks_router.patch("/tasks/{task_id}", response_model=TaskRead)
async def patch_task(
    task_id: str,
    dto: TaskUpdate,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> TaskRead:
    return await service.update_task(task_id, dto, member.id)


@tasks_router.delete("/tasks/{task_id}", response_model=None)
async def delete_task(
    task_id: str,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> dict[str, str]:
    await service.delete_task(task_id)
    return DELETED


@tasks_router.get("/tasks/{task_id}/comments", response_model=list[TaskCommentRead])
async def list_task_comments(
    task_id: str,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> list[TaskCommentRead]:
    return await service.get_task_comments(task_id)


@tasks_router.post("/tasks/{task_id}/comments", response_model=TaskCommentRead, status_code=status.HTTP_201_CREATED)
async def create_task_comment(
    task_id: str,
    dto: ContentRequest,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> TaskCommentRead:
    return await service.add_task_comment(task_id, dto.content, member.id)


@tasks_router.delete("/task-comments/{comment_id}", response_model=None)
async def delete_task_comment(
    comment_id: str,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> dict[str, str]:
    await service.delete_task_comment(comment_id)
    return DELETED


# Projects


@projects_router.get("/projects", response_model=list[ProjectRead])
async def list_projects(
    company_id: str | None = Query(default=None),
    stage: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> list[ProjectRead]:
    return await service.get_projects({"company_id": company_id, "stage": stage, "status": status_filter})


@projects_router.post("/projects", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
async def create_project(
    dto: ProjectCreate,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> ProjectRead:
    return await service.add_project(dto, member.id)


@projects_router.get("/projects/{project_id}", response_model=ProjectDetail)
async def get_project(
    project_id: str,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> ProjectDetail:
    return await service.get_project_by_id(project_id)


@projects_router.patch("/projects/{project_id}", response_model=ProjectRead)
async def patch_project(
    project_id: str,
    dto: ProjectUpdate,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> ProjectRead:
    return await service.update_project(project_id, dto, member.id)


@projects_router.delete("/projects/{project_id}", response_model=None)
async def delete_project(
    project_id: str,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> dict[str, str]:
    await service.delete_project(project_id)
    return DELETED


@projects_router.post(
    "/projects/{project_id}/members",
    response_model=ProjectMemberRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_project_member(
    project_id: str,
    dto: ProjectMemberRequest,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> ProjectMemberRead:
    return await service.add_project_member(project_id, dto.user_id, member.id, role=dto.role)


@projects_router.delete("/projects/{project_id}/members/{user_id}", response_model=None)
async def remove_project_member(
    project_id: str,
    user_id: str,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> dict[str, str]:
    await service.remove_project_member(project_id, user_id, member.id)
    return DELETED


@projects_router.post(
    "/projects/{project_id}/documents",
    response_model=ProjectDocumentRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_project_document(
    project_id: str,
    dto: ProjectDocumentRequest,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> ProjectDocumentRead:
    return await service.add_project_document(project_id, dto, member.id)


@projects_router.delete("/project-documents/{document_id}", response_model=None)
async def delete_project_document(
    document_id: str,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> dict[str, str]:
    await service.delete_project_document(document_id, member.id)
    return DELETED


@projects_router.get("/projects/{project_id}/notes", response_model=list[ProjectNoteRead])
async def list_project_notes(
    project_id: str,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> list[ProjectNoteRead]:
    return await service.get_project_notes(project_id)


@projects_router.post(
    "/projects/{project_id}/notes",
    response_model=ProjectNoteRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_project_note(
    project_id: str,
    dto: ContentRequest,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> ProjectNoteRead:
    return await service.add_project_note(project_id, dto.content, member.id)


@projects_router.delete("/project-notes/{note_id}", response_model=None)
async def delete_project_note(
    note_id: str,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> dict[str, str]:
    await service.delete_project_note(note_id)
    return DELETED


# Email templates


@templates_router.get("/email-templates", response_model=list[EmailTemplateRead])
async def list_email_templates(
    category: str | None = Query(default=None),
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> list[EmailTemplateRead]:
    return await service.get_email_templates(category)


@templates_router.post("/email-templates", response_model=EmailTemplateRead, status_code=status.HTTP_201_CREATED)
async def create_email_template(
    dto: EmailTemplateCreate,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> EmailTemplateRead:
    return await service.add_email_template(dto, member.id)


@templates_router.patch("/email-templates/{template_id}", response_model=EmailTemplateRead)
async def patch_email_template(
    template_id: str,
    dto: EmailTemplateUpdate,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> EmailTemplateRead:
    return await service.update_email_template(template_id, dto)


@templates_router.delete("/email-templates/{template_id}", response_model=None)
async def delete_email_template(
    template_id: str,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> dict[str, str]:
    await service.delete_email_template(template_id)
    return DELETED


# Activity


@activity_router.get("/activity", response_model=list[TeamActivityRead])
async def list_recent_activity(
    limit: int | None = Query(default=None, ge=1, le=200),
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> list[TeamActivityRead]:
    return await service.get_recent_activity(limit)


@activity_router.get("/activity/all", response_model=list[TeamActivityRead])
async def list_team_activity(
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> list[TeamActivityRead]:
    return await service.get_team_activity()


@activity_router.post("/activity", response_model=TeamActivityRead, status_code=status.HTTP_201_CREATED)
async def log_activity(
    dto: ActivityLogRequest,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> TeamActivityRead:
    return await service.log_activity(
        member.id,
        dto.action,
        dto.target_type,
        dto.target_id,
        dto.target_name,
        description=dto.description,
    )


@activity_router.get("/activity/{target_type}/{target_id}", response_model=list[TeamActivityRead])
async def list_activity_for_target(
    target_type: ActivityTargetType,
    target_id: str,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> list[TeamActivityRead]:
    return await service.get_activity_for(target_type, target_id)


# Notifications


@notifications_router.get("/notifications", response_model=list[NotificationRead])
async def list_notifications(
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> list[NotificationRead]:
    return await service.get_my_notifications(member.id)


@notifications_router.get("/notifications/unread-count")
async def unread_notification_count(
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> dict[str, int]:
    return {"unread": await service.get_unread_count(member.id)}


@notifications_router.post("/notifications/read-all")
async def mark_all_notifications_read(
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> dict[str, int]:
    return {"updated": await service.mark_all_as_read(member.id)}


@notifications_router.post("/notifications/{notification_id}/read", response_model=NotificationRead)
async def mark_notification_read(
    notification_id: str,
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> NotificationRead:
    return await service.mark_as_read(notification_id)


# Dashboard, search and exports


@dashboard_router.get("/dashboard/team-pulse", response_model=list[TeamPulseEntry])
async def team_pulse(
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> list[TeamPulseEntry]:
    return await service.get_team_pulse()


@dashboard_router.get("/dashboard/urgent-clients", response_model=list[UrgentClient])
async def urgent_clients(
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> list[UrgentClient]:
    return await service.get_urgent_clients()


@dashboard_router.get("/dashboard/mentions", response_model=list[MentionItem])
async def my_mentions(
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> list[MentionItem]:
    return await service.get_my_mentions(member.id)


@dashboard_router.get("/dashboard/analytics", response_model=PipelineAnalytics)
async def analytics(
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> PipelineAnalytics:
    return await service.get_analytics()


@dashboard_router.get("/dashboard/today", response_model=list[CalendarEvent])
async def today_events(
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> list[CalendarEvent]:
    return await service.get_today_events()


@dashboard_router.get("/search", response_model=SearchResults)
async def search(
    q: str = Query(default=""),
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> SearchResults:
    return await service.search(q)


@dashboard_router.get("/exports/tasks.csv")
async def export_tasks(
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> Response:
    return _csv_response(await service.export_tasks_csv(), "tasks")


@dashboard_router.get("/exports/deals.csv")
async def export_deals(
    service: WorkspaceService = Depends(get_workspace_service),
    member: TeamMember = Depends(get_current_member),
) -> Response:
    return _csv_response(await service.export_deals_csv(), "deals")
