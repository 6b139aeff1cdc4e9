from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from ..schemas.stories import ErrorOut
from ..storage import BlobStream
from ..service import StoryService
from ..dependencies import get_service

router = APIRouter()


class BlobStreamResponse(StreamingResponse):
    """Streams a BlobStream and releases it however the response ends"""

    def __init__(self, stream: BlobStream, content_type: str = None):
        headers = {}
        if stream.length is not None:
            headers['Content-Length'] = str(stream.length)
        super().__init__(stream, media_type=content_type or stream.content_type, headers=headers)
        self.blob_stream = stream

    async def __call__(self, scope, receive, send):
        # a client disconnect cancels the body iterator without closing it
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.blob_stream.aclose()


def stream_response(stream: BlobStream, content_type: str = None) -> BlobStreamResponse:
    return BlobStreamResponse(stream, content_type)


@router.get('/{reference}', response_class=StreamingResponse, responses={404: {'model': ErrorOut}})
async def get_image(reference: str, service: StoryService = Depends(get_service)):
    """Stream an image by blob handle or story id"""
    stream = await service.open_blob_stream(reference)
    return stream_response(stream)
