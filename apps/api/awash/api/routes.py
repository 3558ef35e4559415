"""FastAPI routes for the Awash API.

Endpoints:
- GET  /health
- /projects                     - Project CRUD
- /conversations                - Conversations and their messages
- /jobs                         - Generation jobs; POST /jobs/process drains the queue once
- POST /functions/{name}        - Unified functions ({operation, params})
- POST /route                   - Classify and handle a user request
- POST /smart-diff              - Surgical code update
- POST /decisions               - Score implementation options
- POST /decisions/{id}/choice   - Record what the user picked
- POST /package                 - Download a project as a zip
- /templates, /plugins          - Marketplace
- /errors                       - Client error reports
- POST /schema/validate         - Check a write against the live schema
- WS   /ws/status/{channel}     - Realtime progress events

Authentication:
The upstream auth gateway sets ``X-User-Id``; requests without a valid
UUID there get 401. The status WebSocket closes with 1008 instead.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    Header,
    HTTPException,
    Query,
    Response,
    WebSocket,
    WebSocketDisconnect,
)
from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from awash.agent.decisions import DecisionEngine, record_user_choice
from awash.agent.intent import route_request
from awash.agent.smart_diff import smart_diff_update
from awash.config import get_settings
from awash.database.introspection import SchemaValidator
from awash.database.models import (
    Conversation,
    DetectedError,
    GenerationJob,
    Message,
    Plugin,
    Project,
    Template,
    utcnow,
)
from awash.database.session import async_session_maker, get_db
from awash.errors import report_error
from awash.functions.registry import FunctionContext, load_builtin
from awash.jobs.handlers import run_job
from awash.jobs.queue import cancel_job, enqueue_job, get_job, process_job_queue, retry_job
from awash.packaging import package_project
from awash.realtime import get_broadcaster, relay
from awash.schemas import (
    ConversationCreate,
    ConversationResponse,
    DecisionChoice,
    DecisionRequest,
    DecisionResult,
    DetectedErrorResponse,
    ErrorReport,
    FunctionInvocation,
    JobCreateRequest,
    JobListResponse,
    JobResponse,
    MessageCreate,
    MessageResponse,
    PackageRequest,
    PluginCreate,
    PluginResponse,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
    QueueRunSummary,
    RouteRequest,
    RouteResponse,
    SchemaValidateRequest,
    SchemaValidationResult,
    SmartDiffRequest,
    SmartDiffResponse,
    TemplateCreate,
    TemplateResponse,
)


logger = logging.getLogger(__name__)
router = APIRouter()

settings = get_settings()
functions = load_builtin()


# =============================================================================
# Dependencies
# =============================================================================

def _parse_user_id(x_user_id: str | None) -> UUID | None:
    if not x_user_id:
        return None
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> UUID:
    user_id = _parse_user_id(x_user_id)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Authorization required")
    return user_id


async def get_optional_user_id(x_user_id: str | None = Header(default=None)) -> UUID | None:
    return _parse_user_id(x_user_id)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that outlives the request (queue runs)."""
    return async_session_maker


async def _drain_queue(session_factory: async_sessionmaker[AsyncSession]) -> None:
    summary = await process_job_queue(session_factory, run_job)
    logger.info(f"Background queue run: {summary.model_dump()}")


# =============================================================================
# Health Check
# =============================================================================

@router.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.environment,
    }


# =============================================================================
# Projects
# =============================================================================

async def _owned_project(db: AsyncSession, project_id: UUID, user_id: UUID) -> Project:
    project = await db.get(Project, project_id)
    if project is None or project.user_id != user_id:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.post("/projects", response_model=ProjectResponse, status_code=201)
async def create_project(
    request: ProjectCreate,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ProjectResponse:
    project = Project(user_id=user_id, **request.model_dump())
    db.add(project)
    await db.commit()
    await db.refresh(project)
    logger.info(f"Created project {project.id}")
    return ProjectResponse.model_validate(project, from_attributes=True)


@router.get("/projects", response_model=list[ProjectResponse])
async def list_projects(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[ProjectResponse]:
    result = await db.execute(
        select(Project).where(Project.user_id == user_id).order_by(Project.created_at.desc())
    )
    return [ProjectResponse.model_validate(p, from_attributes=True) for p in result.scalars().all()]


@router.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ProjectResponse:
    project = await _owned_project(db, project_id, user_id)
    return ProjectResponse.model_validate(project, from_attributes=True)


@router.patch("/projects/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: UUID,
    request: ProjectUpdate,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ProjectResponse:
    project = await _owned_project(db, project_id, user_id)
    for field, value in request.model_dump(exclude_unset=True).items():
        setattr(project, field, value)
    project.updated_at = utcnow()
    await db.commit()
    await db.refresh(project)
    return ProjectResponse.model_validate(project, from_attributes=True)


@router.delete("/projects/{project_id}")
async def delete_project(
    project_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    project = await _owned_project(db, project_id, user_id)
    await db.delete(project)
    await db.commit()
    return {"status": "deleted", "project_id": str(project_id)}


# =============================================================================
# Conversations
# =============================================================================

def _message_response(message: Message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        conversation_id=message.conversation_id,
        role=message.role,
        content=message.content,
        metadata=message.meta or {},
        created_at=message.created_at,
    )


async def _owned_conversation(db: AsyncSession, conversation_id: UUID, user_id: UUID) -> Conversation:
    conversation = await db.get(Conversation, conversation_id)
    if conversation is None or conversation.user_id != user_id:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.post("/conversations", response_model=ConversationResponse, status_code=201)
async def create_conversation(
    request: ConversationCreate,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ConversationResponse:
    if request.project_id is not None:
        await _owned_project(db, request.project_id, user_id)
    conversation = Conversation(user_id=user_id, **request.model_dump())
    db.add(conversation)
    await db.commit()
    await db.refresh(conversation)
    return ConversationResponse.model_validate(conversation, from_attributes=True)


@router.get("/conversations", response_model=list[ConversationResponse])
async def list_conversations(
    project_id: UUID | None = Query(default=None),
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[ConversationResponse]:
    query = select(Conversation).where(Conversation.user_id == user_id)
    if project_id is not None:
        query = query.where(Conversation.project_id == project_id)
    result = await db.execute(query.order_by(Conversation.created_at.desc()))
    return [ConversationResponse.model_validate(c, from_attributes=True) for c in result.scalars().all()]


@router.get("/conversations/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[MessageResponse]:
    await _owned_conversation(db, conversation_id, user_id)
    result = await db.execute(
        select(Message).where(Message.conversation_id == conversation_id).order_by(Message.created_at)
    )
    return [_message_response(m) for m in result.scalars().all()]


@router.post("/conversations/{conversation_id}/messages", response_model=MessageResponse, status_code=201)
async def add_message(
    conversation_id: UUID,
    request: MessageCreate,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await _owned_conversation(db, conversation_id, user_id)
    message = Message(
        conversation_id=conversation_id,
        role=request.role,
        content=request.content,
        meta=request.metadata,
    )
    db.add(message)
    await db.commit()
    await db.refresh(message)
    return _message_response(message)


# =============================================================================
# Jobs
# =============================================================================

async def _owned_job(db: AsyncSession, job_id: UUID, user_id: UUID) -> GenerationJob:
    job = await get_job(db, job_id, user_id=user_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("/jobs", response_model=JobResponse, status_code=201)
async def create_job(
    request: JobCreateRequest,
    background_tasks: BackgroundTasks,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> JobResponse:
    """Queue a job and start a queue run in the background.

    Poll GET /jobs/{job_id} or subscribe to the status channel for progress.
    """
    job = await enqueue_job(
        db,
        user_id=user_id,
        job_type=request.job_type,
        input_data={**request.input_data, "prompt": request.prompt},
        project_id=request.project_id,
        conversation_id=request.conversation_id,
    )
    await db.commit()
    background_tasks.add_task(_drain_queue, session_factory)
    return JobResponse.model_validate(job, from_attributes=True)


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    status: str | None = Query(default=None),
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> JobListResponse:
    conditions = [GenerationJob.user_id == user_id]
    if status:
        conditions.append(GenerationJob.status == status)

    result = await db.execute(
        select(GenerationJob)
        .where(*conditions)
        .order_by(GenerationJob.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    jobs = result.scalars().all()
    total = (await db.execute(select(func.count()).select_from(GenerationJob).where(*conditions))).scalar_one()

    return JobListResponse(
        jobs=[JobResponse.model_validate(j, from_attributes=True) for j in jobs],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/jobs/process", response_model=QueueRunSummary)
async def process_jobs(
    batch_size: int | None = Query(default=None, ge=1, le=50),
    user_id: UUID = Depends(get_current_user_id),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> QueueRunSummary:
    """Drain one batch of the queue; meant to be called by a scheduler."""
    logger.info(f"Queue run requested by {user_id}")
    return await process_job_queue(session_factory, run_job, batch_size=batch_size)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job_status(
    job_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await _owned_job(db, job_id, user_id)
    return JobResponse.model_validate(job, from_attributes=True)


@router.post("/jobs/{job_id}/cancel", response_model=JobResponse)
async def cancel_job_route(
    job_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await cancel_job(db, await _owned_job(db, job_id, user_id))
    await db.commit()
    return JobResponse.model_validate(job, from_attributes=True)


@router.post("/jobs/{job_id}/retry", response_model=JobResponse)
async def retry_job_route(
    job_id: UUID,
    background_tasks: BackgroundTasks,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> JobResponse:
    job = await retry_job(db, await _owned_job(db, job_id, user_id))
    await db.commit()
    background_tasks.add_task(_drain_queue, session_factory)
    return JobResponse.model_validate(job, from_attributes=True)


# =============================================================================
# Unified Functions
# =============================================================================

@router.post("/functions/{name}")
async def invoke_function(
    name: str,
    request: FunctionInvocation,
    user_id: UUID | None = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    data = await functions.dispatch(
        name,
        request.operation,
        request.params,
        FunctionContext(session=db, user_id=user_id),
    )
    return {"success": True, "data": data}


# =============================================================================
# Routing / Smart Diff
# =============================================================================

@router.post("/route", response_model=RouteResponse)
async def route(
    request: RouteRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> RouteResponse:
    return await route_request(
        db,
        request.request,
        user_id=user_id,
        conversation_id=request.conversation_id,
        project_id=request.project_id,
        context=request.context,
    )


@router.post("/smart-diff", response_model=SmartDiffResponse)
async def smart_diff(
    request: SmartDiffRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> SmartDiffResponse:
    return await smart_diff_update(
        db,
        user_request=request.user_request,
        current_code=request.current_code,
        conversation_id=request.conversation_id,
        user_id=user_id,
    )


# =============================================================================
# Decisions
# =============================================================================

@router.post("/decisions", response_model=DecisionResult)
async def make_decision(
    request: DecisionRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> DecisionResult:
    return await DecisionEngine(db).make_decision(request.options, request.context)


@router.post("/decisions/{decision_id}/choice")
async def record_choice(
    decision_id: UUID,
    request: DecisionChoice,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    log = await record_user_choice(
        db,
        decision_id,
        request.option_id,
        was_successful=request.was_successful,
        feedback=request.feedback,
    )
    if log is None:
        raise HTTPException(status_code=404, detail="Decision not found")
    return {
        "success": True,
        "decision_id": str(decision_id),
        "recommended_option": log.recommended_option,
        "user_choice": log.user_choice,
    }


# =============================================================================
# Packaging
# =============================================================================

@router.post("/package")
async def package(
    request: PackageRequest,
    user_id: UUID = Depends(get_current_user_id),
) -> Response:
    archive = package_project(request.project_files, request.dependencies, request.project_name)
    return Response(
        content=archive,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{request.project_name}.zip"'},
    )


# =============================================================================
# Marketplace
# =============================================================================

@router.get("/templates", response_model=list[TemplateResponse])
async def list_templates(
    category: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> list[TemplateResponse]:
    query = select(Template)
    if category:
        query = query.where(Template.category == category)
    result = await db.execute(query.order_by(Template.downloads.desc(), Template.created_at.desc()))
    return [TemplateResponse.model_validate(t, from_attributes=True) for t in result.scalars().all()]


@router.post("/templates", response_model=TemplateResponse, status_code=201)
async def create_template(
    request: TemplateCreate,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> TemplateResponse:
    template = Template(**request.model_dump())
    db.add(template)
    await db.commit()
    await db.refresh(template)
    return TemplateResponse.model_validate(template, from_attributes=True)


@router.post("/templates/{template_id}/download", response_model=TemplateResponse)
async def download_template(
    template_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> TemplateResponse:
    template = await db.get(Template, template_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Template not found")
    template.downloads += 1
    await db.commit()
    await db.refresh(template)
    return TemplateResponse.model_validate(template, from_attributes=True)


@router.get("/plugins", response_model=list[PluginResponse])
async def list_plugins(
    user_id: UUID | None = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[PluginResponse]:
    """Public plugins, plus the caller's own private ones."""
    visible = Plugin.is_public == True  # noqa: E712
    if user_id is not None:
        visible = or_(visible, Plugin.author_id == user_id)
    result = await db.execute(select(Plugin).where(visible).order_by(Plugin.installs.desc()))
    return [PluginResponse.model_validate(p, from_attributes=True) for p in result.scalars().all()]


@router.post("/plugins", response_model=PluginResponse, status_code=201)
async def create_plugin(
    request: PluginCreate,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> PluginResponse:
    plugin = Plugin(author_id=user_id, **request.model_dump())
    db.add(plugin)
    await db.commit()
    await db.refresh(plugin)
    return PluginResponse.model_validate(plugin, from_attributes=True)


@router.post("/plugins/{plugin_id}/install", response_model=PluginResponse)
async def install_plugin(
    plugin_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> PluginResponse:
    plugin = await db.get(Plugin, plugin_id)
    if plugin is None or (not plugin.is_public and plugin.author_id != user_id):
        raise HTTPException(status_code=404, detail="Plugin not found")
    plugin.installs += 1
    await db.commit()
    await db.refresh(plugin)
    return PluginResponse.model_validate(plugin, from_attributes=True)


# =============================================================================
# Errors / Schema
# =============================================================================

@router.post("/errors", response_model=DetectedErrorResponse, status_code=201)
async def create_error_report(
    request: ErrorReport,
    user_id: UUID | None = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
) -> DetectedErrorResponse:
    row = await report_error(
        db,
        request.error_message,
        severity=request.severity,
        context=request.context,
        error_type=request.error_type,
        user_id=user_id,
    )
    if row is None:
        raise HTTPException(status_code=500, detail="Error report could not be stored")
    await db.commit()
    return DetectedErrorResponse.model_validate(row, from_attributes=True)


@router.get("/errors", response_model=list[DetectedErrorResponse])
async def list_errors(
    severity: str | None = Query(default=None),
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[DetectedErrorResponse]:
    query = select(DetectedError).where(DetectedError.user_id == user_id)
    if severity:
        query = query.where(DetectedError.severity == severity)
    if status:
        query = query.where(DetectedError.status == status)
    result = await db.execute(query.order_by(DetectedError.created_at.desc()).limit(limit))
    return [DetectedErrorResponse.model_validate(e, from_attributes=True) for e in result.scalars().all()]


@router.post("/schema/validate", response_model=SchemaValidationResult)
async def validate_schema(
    request: SchemaValidateRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> SchemaValidationResult:
    return await SchemaValidator(db).validate_operation(request.operation, request.table, request.data)


# =============================================================================
# Realtime
# =============================================================================

@router.websocket("/ws/status/{channel}")
async def status_socket(
    websocket: WebSocket,
    channel: str,
    x_user_id: str | None = Header(default=None),
) -> None:
    """Stream events published on ``channel`` until the client disconnects."""
    try:
        user_id = _parse_user_id(x_user_id)
    except HTTPException:
        user_id = None
    if user_id is None:
        await websocket.close(code=1008, reason="Authorization required")
        return

    await websocket.accept()
    async with get_broadcaster().subscribe(channel) as queue:
        try:
            await relay(websocket, queue)
        except WebSocketDisconnect:
            logger.debug(f"Connection to {channel} dropped")
    logger.debug(f"User {user_id} left {channel}")
