from fastapi import APIRouter, Depends
from ..schemas.stories import StoryCreateIn, StoryCreateOut, StoryOut, ErrorOut
from ..service import StoryService
from ..dependencies import get_service

router = APIRouter()

ERROR_RESPONSES = {400: {'model': ErrorOut}, 404: {'model': ErrorOut}, 500: {'model': ErrorOut}}


def image_url(story_id: str) -> str:
    return f'/api/images/{story_id}'


@router.post('', status_code=201, response_model=StoryCreateOut, responses=ERROR_RESPONSES)
async def create(payload: StoryCreateIn, service: StoryService = Depends(get_service)):
    created = await service.create(payload.imageData, story_id=payload.storyId)
    return StoryCreateOut(storyId=created.story_id, imageUrl=image_url(created.story_id))


@router.get('/{story_id}', response_model=StoryOut, responses=ERROR_RESPONSES)
async def get_story(story_id: str, service: StoryService = Depends(get_service)):
    story = await service.get_metadata(story_id)
    return StoryOut(
        storyId=story.story_id,
        views=story.views,
        contentType=story.content_type,
        size=story.size,
        createdAt=story.created_at,
        imageUrl=image_url(story.story_id),
    )
