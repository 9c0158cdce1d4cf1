import hmac
import logging
from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status

from mediacompose.config import get_settings
from mediacompose.models.database import async_session_maker, schema_initializer
from mediacompose.render.composer import MediaComposer
from mediacompose.render.engine import FFmpegEngine
from mediacompose.services.composition_service import CompositionService
from mediacompose.services.job_store import CompositionJobStore

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


def _key_matches(candidate: str, api_keys: list[str]) -> bool:
    return any(hmac.compare_digest(candidate, key) for key in api_keys)


async def require_api_key(
    authorization: Annotated[Optional[str], Header(alias="Authorization")] = None,
) -> None:
    """Gate a route behind ``Authorization: Bearer <API_KEY>``.

    401 when the header is missing, 400 when it is not a Bearer token,
    403 when the key is not configured. With no keys configured and dev mode
    on, every caller passes.
    """
    settings = get_settings()
    api_keys = settings.api_keys

    if not api_keys and settings.dev_mode:
        return

    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not authorization.lower().startswith(BEARER_PREFIX) or not authorization[len(BEARER_PREFIX):].strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Invalid Authorization header format. Format should be "Bearer <API_KEY>"',
        )

    candidate = authorization[len(BEARER_PREFIX):].strip()
    if not _key_matches(candidate, api_keys):
        logger.warning("Rejected request with unknown API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )


@lru_cache
def get_job_store() -> CompositionJobStore:
    return CompositionJobStore(async_session_maker, schema_initializer)


@lru_cache
def get_composer() -> MediaComposer:
    return MediaComposer(FFmpegEngine(get_settings().ffmpeg_path))


def get_composition_service(
    store: Annotated[CompositionJobStore, Depends(get_job_store)],
    composer: Annotated[MediaComposer, Depends(get_composer)],
) -> CompositionService:
    return CompositionService(store, composer)


ApiKey = Depends(require_api_key)
Composer = Annotated[MediaComposer, Depends(get_composer)]
Service = Annotated[CompositionService, Depends(get_composition_service)]
