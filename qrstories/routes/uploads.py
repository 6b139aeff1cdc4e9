"""
Multipart upload routes, kept for clients of the first QR image backend.

The frontend sends multipart/form-data with the file in field ``image``.
"""

from typing import Optional
from fastapi import APIRouter, Depends, File, UploadFile
from ..errors import InvalidInput, PayloadTooLarge
from ..schemas.stories import ImageUploadOut, ImageMetaOut, ErrorOut
from ..service import StoryService
from ..dependencies import get_service
from .images import stream_response

router = APIRouter()


async def read_upload(image: UploadFile, max_bytes: Optional[int]) -> bytes:
    """Read an uploaded file, stopping one byte past ``max_bytes``"""
    if not max_bytes:
        return await image.read()
    content = await image.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise PayloadTooLarge(f'Image too large. Max size is {max_bytes} bytes')
    return content


@router.post('/upload', response_model=ImageUploadOut, responses={400: {'model': ErrorOut}})
async def upload(image: Optional[UploadFile] = File(None), service: StoryService = Depends(get_service)):
    if image is None:
        raise InvalidInput('No image provided. Use form field name "image".')
    content = await read_upload(image, service.max_image_bytes)
    created = await service.create(content, content_type=image.content_type, filename=image.filename)
    return ImageUploadOut(id=created.story_id, url=f'/image/{created.story_id}')


@router.get('/image/{story_id}', responses={404: {'model': ErrorOut}})
async def get_image(story_id: str, service: StoryService = Depends(get_service)):
    story = await service.find(story_id)
    stream = await service.open_blob_stream(story.blob_handle)
    return stream_response(stream, story.content_type)


@router.get('/image/{story_id}/meta', response_model=ImageMetaOut, responses={404: {'model': ErrorOut}})
async def get_image_meta(story_id: str, service: StoryService = Depends(get_service)):
    story = await service.find(story_id)
    return ImageMetaOut(
        publicId=story.story_id,
        filename=story.filename,
        contentType=story.content_type,
        uploadDate=story.created_at,
        length=story.size,
        views=story.views,
    )
