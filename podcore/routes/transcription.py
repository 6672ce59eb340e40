"""Endpoints called by the external transcription worker."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from podcore.models.episodes import (
    AudioUrlResponse,
    EpisodeRead,
    TranscriptionCompleteRequest,
    TranscriptionQueueItem,
    TranscriptionQueueResponse,
    TranscriptionStatusResponse,
    UploadUrlResponse,
)
from podcore.schemas.episodes import TranscribeStatus
from podcore.services import transcription_lock_service as locks
from podcore.services.deploy_service import DeployTrigger, get_deploy_trigger
from podcore.services.storage_client import StorageClient, get_storage
from podcore.utils.db_async import get_session

queue_router = APIRouter(prefix="/api/transcription", tags=["transcription"])
router = APIRouter(prefix="/api/episodes", tags=["transcription"])


@queue_router.get("/queue", response_model=TranscriptionQueueResponse)
async def get_queue(
    limit: int = Query(default=locks.DEFAULT_QUEUE_LIMIT, ge=1, le=10),
    db: AsyncSession = Depends(get_session),
) -> TranscriptionQueueResponse:
    """Lockable episodes, oldest first. Does not lock anything."""
    episodes = await locks.get_transcription_queue(db, limit)
    return TranscriptionQueueResponse(
        episodes=[TranscriptionQueueItem.model_validate(ep) for ep in episodes]
    )


@router.post("/{episode_id}/transcription-lock", response_model=EpisodeRead)
async def acquire_lock(
    episode_id: int,
    db: AsyncSession = Depends(get_session),
) -> EpisodeRead:
    """409 when another worker holds a live lock, 400 when not lockable."""
    return EpisodeRead.model_validate(await locks.acquire_lock(db, episode_id))


@router.delete("/{episode_id}/transcription-lock", response_model=TranscriptionStatusResponse)
async def release_lock(
    episode_id: int,
    db: AsyncSession = Depends(get_session),
) -> TranscriptionStatusResponse:
    episode = await locks.release_lock(db, episode_id)
    return TranscriptionStatusResponse(
        publish_status=episode.publish_status,
        transcribe_status=episode.transcribe_status,
    )


@router.get("/{episode_id}/audio-url", response_model=AudioUrlResponse)
async def get_audio_url(
    episode_id: int,
    db: AsyncSession = Depends(get_session),
    storage: StorageClient = Depends(get_storage),
) -> AudioUrlResponse:
    url = await locks.get_audio_download_url(db, storage, episode_id)
    return AudioUrlResponse(download_url=url, expires_in=storage.url_ttl_seconds)


@router.post("/{episode_id}/transcript/upload-url", response_model=UploadUrlResponse)
async def get_transcript_upload_url(
    episode_id: int,
    db: AsyncSession = Depends(get_session),
    storage: StorageClient = Depends(get_storage),
) -> UploadUrlResponse:
    url = await locks.get_transcript_upload_url(db, storage, episode_id)
    return UploadUrlResponse(upload_url=url, expires_in=storage.url_ttl_seconds)


@router.post("/{episode_id}/transcription-complete", response_model=TranscriptionStatusResponse)
async def transcription_complete(
    episode_id: int,
    body: TranscriptionCompleteRequest,
    db: AsyncSession = Depends(get_session),
    storage: StorageClient = Depends(get_storage),
    deploy: DeployTrigger = Depends(get_deploy_trigger),
) -> TranscriptionStatusResponse:
    """Idempotent: repeating the call after it succeeded returns success again."""
    episode = await locks.complete_transcription(
        db,
        storage,
        episode_id,
        TranscribeStatus(body.status),
        duration=body.duration,
        deploy=deploy,
    )
    return TranscriptionStatusResponse(
        publish_status=episode.publish_status,
        transcribe_status=episode.transcribe_status,
    )
