"""Projects CRUD API routes — ownership-scoped and subscription-gated.

Metadata lives in the ``projects`` table; the JSON body and the optional
PNG thumbnail live in object storage under ``<user_id>/<project_id>``.
"""

import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from account_api.api.deps import get_db, get_project_storage, require_subscription
from account_api.auth.identity import AuthenticatedUser
from account_api.database import utcnow
from account_api.models.project import Project
from account_api.schemas.project import (
    ProjectCreate,
    ProjectEnvelope,
    ProjectListResponse,
    ProjectResponse,
    ProjectSummary,
    ProjectUpdate,
    SuccessResponse,
)
from account_api.services.project_storage import (
    ProjectStorage,
    StorageError,
    build_project_json_path,
    build_thumbnail_path,
    decode_thumbnail,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/projects", tags=["projects"])


async def _get_owned_project(db: AsyncSession, project_id: uuid.UUID, user_id: str) -> Project:
    result = await db.execute(
        select(Project).where(Project.id == project_id, Project.user_id == user_id)
    )
    project = result.scalar_one_or_none()
    if project is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="project_not_found",
        )
    return project


def _storage_failure() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="storage_error",
    )


@router.get(
    "",
    response_model=ProjectListResponse,
    summary="List the current user's projects for one app",
)
async def list_projects(
    app: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_subscription),
) -> ProjectListResponse:
    """Return projects for ``app``, most recently updated first."""
    if not app:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="missing_app_name",
        )

    result = await db.execute(
        select(Project)
        .where(Project.user_id == current_user.id, Project.app_name == app)
        .order_by(Project.updated_at.desc())
    )
    projects = result.scalars().all()
    return ProjectListResponse(projects=[ProjectSummary.model_validate(p) for p in projects])


@router.post(
    "",
    response_model=ProjectEnvelope,
    summary="Save a new project",
)
async def create_project(
    body: ProjectCreate,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_subscription),
    storage: ProjectStorage = Depends(get_project_storage),
) -> ProjectEnvelope:
    """Upload the JSON body, then insert the metadata row under the same ID."""
    project_id = uuid.uuid4()
    storage_path = build_project_json_path(current_user.id, str(project_id))

    try:
        await storage.upload_json(storage_path, body.data, upsert=False)
    except StorageError as e:
        logger.error("Project upload failed for user %s: %s", current_user.id, e)
        raise _storage_failure() from e

    project = Project(
        id=project_id,
        user_id=current_user.id,
        name=body.name,
        app_name=body.app_name,
        storage_path=storage_path,
    )
    db.add(project)
    await db.flush()
    await db.refresh(project)

    logger.info("Project %s created for user %s", project.id, current_user.id)
    return ProjectEnvelope(project=ProjectResponse.model_validate(project))


@router.get(
    "/{project_id}",
    summary="Get a project's JSON body",
)
async def get_project(
    project_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_subscription),
    storage: ProjectStorage = Depends(get_project_storage),
) -> Any:
    """Return the stored JSON document exactly as it was saved."""
    project = await _get_owned_project(db, project_id, current_user.id)

    try:
        return await storage.download_json(project.storage_path)
    except StorageError as e:
        logger.error("Project download failed (%s): %s", project.storage_path, e)
        raise _storage_failure() from e
    except ValueError as e:
        logger.error("Invalid file format in storage: %s", project.storage_path)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="invalid_file_format",
        ) from e


@router.put(
    "/{project_id}",
    response_model=ProjectEnvelope,
    summary="Update a project",
)
async def update_project(
    project_id: uuid.UUID,
    body: ProjectUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_subscription),
    storage: ProjectStorage = Depends(get_project_storage),
) -> ProjectEnvelope:
    """Update name, body, and/or thumbnail. A failed thumbnail upload is skipped."""
    project = await _get_owned_project(db, project_id, current_user.id)

    if body.data is not None:
        try:
            await storage.upload_json(project.storage_path, body.data, upsert=True)
        except StorageError as e:
            logger.error("Project file update failed (%s): %s", project.storage_path, e)
            raise _storage_failure() from e

    if body.thumbnail:
        image_path = project.thumbnail_path or build_thumbnail_path(
            current_user.id, str(project.id)
        )
        try:
            await storage.upload(
                image_path, decode_thumbnail(body.thumbnail), "image/png", upsert=True
            )
        except (StorageError, ValueError) as e:
            logger.warning("Thumbnail update failed for project %s: %s", project.id, e)
        else:
            project.thumbnail_path = image_path

    if body.name:
        project.name = body.name

    # Touch even when only blobs changed so listings reorder
    project.updated_at = utcnow()
    await db.flush()
    await db.refresh(project)

    logger.info("Project %s updated for user %s", project.id, current_user.id)
    return ProjectEnvelope(project=ProjectResponse.model_validate(project))


@router.delete(
    "/{project_id}",
    response_model=SuccessResponse,
    summary="Delete a project",
)
async def delete_project(
    project_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_subscription),
    storage: ProjectStorage = Depends(get_project_storage),
) -> SuccessResponse:
    """Delete the row, then remove its blobs. Blob removal failures are only logged."""
    project = await _get_owned_project(db, project_id, current_user.id)

    files_to_remove = [project.storage_path]
    if project.thumbnail_path:
        files_to_remove.append(project.thumbnail_path)

    await db.delete(project)
    await db.flush()

    try:
        await storage.remove(files_to_remove)
    except StorageError as e:
        logger.warning("Project storage removal failed (after DB delete) %s: %s", files_to_remove, e)

    logger.info("Project %s deleted for user %s", project_id, current_user.id)
    return SuccessResponse()


@router.get(
    "/{project_id}/thumbnail",
    response_class=Response,
    summary="Get a project's PNG thumbnail",
)
async def get_project_thumbnail(
    project_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_subscription),
    storage: ProjectStorage = Depends(get_project_storage),
) -> Response:
    project = await _get_owned_project(db, project_id, current_user.id)
    if not project.thumbnail_path:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="thumbnail_not_found",
        )

    try:
        image = await storage.download(project.thumbnail_path)
    except StorageError as e:
        logger.error("Thumbnail download failed (%s): %s", project.thumbnail_path, e)
        raise _storage_failure() from e

    return Response(
        content=image,
        media_type="image/png",
        headers={"Cache-Control": "public, max-age=3600"},
    )
