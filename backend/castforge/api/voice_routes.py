"""
HTTP API routes for narration voices.
"""

import logging

from fastapi import APIRouter, Depends

from castforge.api.dependencies import Container, get_container, get_owner_id, get_repository
from castforge.models.schemas import Voice, VoicePreference, VoicePreferenceRequest
from castforge.services.errors import NotFound
from castforge.services.repository import Repository

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/voices", tags=["voices"])


@router.get("", response_model=list[Voice])
async def list_voices(container: Container = Depends(get_container)) -> list[Voice]:
    """Voices offered by the narration engine for the configured language."""
    return await container.narration.list_voices()


@router.get("/preference", response_model=VoicePreference)
async def get_preference(
    owner_id: str = Depends(get_owner_id),
    repository: Repository = Depends(get_repository),
) -> VoicePreference:
    """
    Raises:
        404: No preference saved yet
    """
    preference = await repository.get_voice_preference(owner_id)
    if preference is None:
        raise NotFound("No voice preference saved")
    return preference


@router.put("/preference", response_model=VoicePreference)
async def save_preference(
    request: VoicePreferenceRequest,
    owner_id: str = Depends(get_owner_id),
    repository: Repository = Depends(get_repository),
) -> VoicePreference:
    return await repository.save_voice_preference(
        owner_id, request.host1_voice_id, request.host2_voice_id,
    )
