from fastapi import Request

from .config import Settings
from .service import StoryService


def get_service(request: Request) -> StoryService:
    service = getattr(request.app.state, 'service', None)
    if service is None:
        raise RuntimeError('Story service is not initialised')
    return service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
