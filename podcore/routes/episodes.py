"""Episode CRUD, publish transitions, audio upload and user transcription actions."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from podcore.models.episodes import (
    EpisodeCreate,
    EpisodeListResponse,
    EpisodeRead,
    EpisodeUpdate,
    TransitionRequest,
    UploadCompleteRequest,
    UploadUrlResponse,
)
from podcore.schemas.episodes import PublishStatus
from podcore.services import episode_state_service as episodes
from podcore.services.deploy_service import DeployTrigger, get_deploy_trigger
from podcore.services.storage_client import StorageClient, get_storage
from podcore.utils.db_async import get_session

router = APIRouter(prefix="/api/episodes", tags=["episodes"])


@router.post("", response_model=EpisodeRead, status_code=status.HTTP_201_CREATED)
async def create_episode(
    body: EpisodeCreate,
    db: AsyncSession = Depends(get_session),
) -> EpisodeRead:
    """Create an episode in ``new``; upload audio next."""
    episode = await episodes.create_episode(db, body)
    return EpisodeRead.model_validate(episode)


@router.get("", response_model=EpisodeListResponse)
async def list_episodes(
    podcast_id: Optional[int] = Query(default=None, alias="podcastId"),
    publish_status: Optional[PublishStatus] = Query(default=None, alias="publishStatus"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_session),
) -> EpisodeListResponse:
    items, total = await episodes.list_episodes(
        db, podcast_id=podcast_id, publish_status=publish_status, limit=limit, offset=offset
    )
    return EpisodeListResponse(
        items=[EpisodeRead.model_validate(ep) for ep in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{episode_id}", response_model=EpisodeRead)
async def get_episode(
    episode_id: int,
    db: AsyncSession = Depends(get_session),
) -> EpisodeRead:
    return EpisodeRead.model_validate(await episodes.get_episode(db, episode_id))


@router.post("/{episode_id}", response_model=EpisodeRead)
async def update_episode(
    episode_id: int,
    body: EpisodeUpdate,
    db: AsyncSession = Depends(get_session),
    deploy: DeployTrigger = Depends(get_deploy_trigger),
) -> EpisodeRead:
    """Partial update: text fields, platform URLs, publishAt."""
    episode = await episodes.update_episode(db, episode_id, body, deploy=deploy)
    return EpisodeRead.model_validate(episode)


@router.delete("/{episode_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_episode(
    episode_id: int,
    db: AsyncSession = Depends(get_session),
    storage: StorageClient = Depends(get_storage),
    deploy: DeployTrigger = Depends(get_deploy_trigger),
) -> None:
    await episodes.delete_episode(db, storage, episode_id, deploy=deploy)


@router.post("/{episode_id}/transition", response_model=EpisodeRead)
async def request_transition(
    episode_id: int,
    body: TransitionRequest,
    db: AsyncSession = Depends(get_session),
    deploy: DeployTrigger = Depends(get_deploy_trigger),
) -> EpisodeRead:
    """Publish now, unpublish, schedule, or move publishAt."""
    episode = await episodes.request_transition(
        db,
        episode_id,
        publish_status=body.publish_status,
        publish_at=body.publish_at,
        deploy=deploy,
    )
    return EpisodeRead.model_validate(episode)


@router.post("/{episode_id}/upload-url", response_model=UploadUrlResponse)
async def create_upload_url(
    episode_id: int,
    db: AsyncSession = Depends(get_session),
    storage: StorageClient = Depends(get_storage),
) -> UploadUrlResponse:
    url = await episodes.create_audio_upload_url(db, storage, episode_id)
    return UploadUrlResponse(upload_url=url, expires_in=storage.url_ttl_seconds)


@router.post("/{episode_id}/upload-complete", response_model=EpisodeRead)
async def upload_complete(
    episode_id: int,
    body: UploadCompleteRequest,
    db: AsyncSession = Depends(get_session),
    storage: StorageClient = Depends(get_storage),
    deploy: DeployTrigger = Depends(get_deploy_trigger),
) -> EpisodeRead:
    episode = await episodes.complete_audio_upload(db, storage, episode_id, body, deploy=deploy)
    return EpisodeRead.model_validate(episode)


@router.post("/{episode_id}/transcription-reset", response_model=EpisodeRead)
async def reset_transcription(
    episode_id: int,
    db: AsyncSession = Depends(get_session),
    deploy: DeployTrigger = Depends(get_deploy_trigger),
) -> EpisodeRead:
    episode = await episodes.reset_transcription(db, episode_id, deploy=deploy)
    return EpisodeRead.model_validate(episode)


@router.post("/{episode_id}/transcription-skip", response_model=EpisodeRead)
async def skip_transcription(
    episode_id: int,
    db: AsyncSession = Depends(get_session),
    deploy: DeployTrigger = Depends(get_deploy_trigger),
) -> EpisodeRead:
    episode = await episodes.skip_transcription(db, episode_id, deploy=deploy)
    return EpisodeRead.model_validate(episode)
