"""Operator routes for projects and channels.

- GET  /api/v1/projects                         - list projects (filter by stage/status)
- GET  /api/v1/projects/{project_id}            - project detail with logs
- POST /api/v1/projects/{project_id}/approve    - approve a project held at review
- POST /api/v1/channels/{channel_id}/refresh-token - ensure a fresh YouTube token
"""

from collections.abc import AsyncIterator
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autopilot.clients.google_oauth import GoogleOAuthClient
from autopilot.config import get_youtube_oauth_client
from autopilot.database import get_session, require_session_factory
from autopilot.exceptions import ConfigurationError, GenerationAPIError
from autopilot.models import PipelineStage, Project, ProjectStatus
from autopilot.schemas.api import ApprovalResponse, ProjectDetail, ProjectSummary, TokenRefreshResponse
from autopilot.services.credential_service import CredentialService
from autopilot.services.ports import CredentialRefresher
from autopilot.services.review_service import approve_project
from autopilot.utils.encryption import DecryptionError
from autopilot.utils.logging import get_logger

log = get_logger(__name__)
router = APIRouter(prefix="/api/v1", tags=["projects"])

MAX_PAGE_SIZE = 200


@router.get("/projects", response_model=list[ProjectSummary])
async def list_projects(
    stage: PipelineStage | None = Query(default=None),
    project_status: ProjectStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_session),
) -> list[Project]:
    """List projects, oldest first (the order the engine claims them in)."""
    query = select(Project).order_by(Project.created_at.asc()).limit(limit)
    if stage is not None:
        query = query.where(Project.pipeline_stage == stage)
    if project_status is not None:
        query = query.where(Project.status == project_status)

    result = await db.execute(query)
    return list(result.scalars().all())


@router.get("/projects/{project_id}", response_model=ProjectDetail)
async def get_project(project_id: UUID, db: AsyncSession = Depends(get_session)) -> Project:
    project = await db.get(Project, project_id)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project


@router.post("/projects/{project_id}/approve", response_model=ApprovalResponse)
async def approve(project_id: UUID, db: AsyncSession = Depends(get_session)) -> ApprovalResponse:
    """Approve a project; it moves to ready on the next invocation at review."""
    try:
        result = await approve_project(db, project_id)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    return ApprovalResponse(
        project_id=result.project_id,
        stage=result.stage,
        approved=result.approved,
        already_approved=result.already_approved,
    )


async def get_credential_refresher() -> AsyncIterator[CredentialRefresher]:
    """Dependency building a CredentialService for one request."""
    try:
        client_id, client_secret = get_youtube_oauth_client()
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e

    oauth = GoogleOAuthClient(client_id, client_secret)
    try:
        yield CredentialService(require_session_factory(), oauth)
    finally:
        await oauth.close()


@router.post("/channels/{channel_id}/refresh-token", response_model=TokenRefreshResponse)
async def refresh_token(
    channel_id: UUID,
    refresher: CredentialRefresher = Depends(get_credential_refresher),
) -> TokenRefreshResponse:
    """Refresh the channel's YouTube access token if it is near expiry.

    The token itself is never returned.
    """
    try:
        await refresher.refresh_access_token(str(channel_id))
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except (GenerationAPIError, DecryptionError) as e:
        log.warning("token_refresh_failed", channel_id=str(channel_id), error=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    return TokenRefreshResponse(channel_id=str(channel_id))
