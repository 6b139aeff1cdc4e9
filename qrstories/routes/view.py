from urllib.parse import urlencode
from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from ..config import Settings
from ..service import StoryService
from ..dependencies import get_service, get_settings

router = APIRouter()


@router.get('/{story_id}')
async def view_story(story_id: str, service: StoryService = Depends(get_service),
                     settings: Settings = Depends(get_settings)):
    """Redirect to the reveal page for a story"""
    story = await service.find(story_id)
    query = urlencode({'image': f'/api/images/{story.blob_handle}', 'story': story.story_id})
    separator = '&' if '?' in settings.reveal_page_url else '?'
    return RedirectResponse(f'{settings.reveal_page_url}{separator}{query}')
