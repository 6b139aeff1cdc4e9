"""
Story service: assigns public ids to images and serves them back.

Create writes the image to the blob store first and only then inserts the
metadata record, so a record never points at an incomplete blob. The two
writes are not transactional: a failure (or crash) after the blob write
leaves an orphaned blob behind, which ``purge_orphaned_blobs`` cleans up.
"""

import base64
import binascii
import logging
import re
from datetime import timedelta
from typing import Callable, List, Optional, Union

from bson import ObjectId
from pymongo.errors import PyMongoError

from . import metrics
from .crud import StoryRepository
from .errors import (
    DuplicateStoryId,
    InvalidHandle,
    InvalidInput,
    MetadataWriteError,
    NotFound,
    PayloadTooLarge,
    StorageWriteError,
)
from .ids import StoryIdGenerator
from .models import CreatedStory, StoryRecord, utc_now
from .storage import BlobInfo, BlobStore, BlobStream

logger = logging.getLogger(__name__)

DATA_URI_RE = re.compile(r'^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w-]+=[^;,]*)*;base64,', re.IGNORECASE)
ORPHAN_GRACE_PERIOD = timedelta(hours=1)


def _decoded_length(encoded: str) -> int:
    return len(encoded) * 3 // 4 - (len(encoded) - len(encoded.rstrip('=')))


def _too_large(max_bytes: Optional[int]) -> PayloadTooLarge:
    return PayloadTooLarge(f'Image too large. Max size is {max_bytes} bytes')


def decode_image_data(payload: Union[str, bytes, None], max_bytes: Optional[int] = None):
    """Decode a base64 string (optionally a data URI) into ``(bytes, mime)``.

    ``mime`` is None unless the payload carried a data-URI prefix. When
    ``max_bytes`` is set, oversized payloads are rejected before decoding.
    """
    if payload is None or len(payload) == 0:
        raise InvalidInput('No image data provided')
    if isinstance(payload, (bytes, bytearray, memoryview)):
        if max_bytes and len(payload) > max_bytes:
            raise _too_large(max_bytes)
        return bytes(payload), None

    text = payload.strip()
    mime = None
    match = DATA_URI_RE.match(text)
    if match:
        mime = match.group('mime')
        if mime:
            mime = mime.lower()
        text = text[match.end():]
    if not text:
        raise InvalidInput('No image data provided')

    encoded = ''.join(text.split())
    if max_bytes and _decoded_length(encoded) > max_bytes:
        raise _too_large(max_bytes)
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidInput('Invalid image data')
    if not data:
        raise InvalidInput('No image data provided')
    return data, mime


def duplicate_story_policy(story_id: str, existing: Optional[StoryRecord]) -> CreatedStory:
    """Decide the outcome of a create whose story id is already taken.

    The id is treated as already saved: the existing record is returned as a
    success and no fresh id is drawn. A genuine random collision is therefore
    indistinguishable from a repeated save.
    """
    blob_handle = existing.blob_handle if existing is not None else None
    return CreatedStory(story_id=story_id, blob_handle=blob_handle, duplicate=True)


class StoryService:

    def __init__(self, blobs: BlobStore, stories: StoryRepository,
                 id_generator: Callable[[], str] = None,
                 default_content_type: str = 'image/png',
                 max_image_bytes: Optional[int] = None,
                 on_duplicate: Callable[[str, Optional[StoryRecord]], CreatedStory] = duplicate_story_policy):
        self.blobs = blobs
        self.stories = stories
        self.generate_id = id_generator or StoryIdGenerator()
        self.default_content_type = default_content_type
        self.max_image_bytes = max_image_bytes
        self.on_duplicate = on_duplicate

    async def create(self, payload: Union[str, bytes], content_type: Optional[str] = None,
                     story_id: Optional[str] = None, filename: Optional[str] = None) -> CreatedStory:
        if story_id is not None and ObjectId.is_valid(story_id):
            # /api/images/<ref> resolves blob handles first
            raise InvalidInput('Story id must not look like an image handle')
        data, mime = decode_image_data(payload, self.max_image_bytes)
        if self.max_image_bytes and len(data) > self.max_image_bytes:
            raise _too_large(self.max_image_bytes)
        content_type = content_type or mime or self.default_content_type
        story_id = story_id or self.generate_id()

        blob_handle = await self.blobs.write(
            filename or story_id, data, content_type, metadata={'storyId': story_id})
        metrics.BLOB_BYTES_WRITTEN.inc(len(data))

        record = StoryRecord(
            story_id=story_id,
            blob_handle=blob_handle,
            content_type=content_type,
            size=len(data),
            created_at=utc_now(),
            views=0,
            filename=filename,
        )
        try:
            await self.stories.insert(record)
        except DuplicateStoryId:
            logger.info({'msg': 'story_already_saved', 'story_id': story_id})
            metrics.STORY_DUPLICATES.inc()
            await self._discard_blob(blob_handle)
            try:
                existing = await self.stories.find(story_id)
            except PyMongoError as e:
                raise MetadataWriteError(f'Failed to load existing story: {e}') from e
            return self.on_duplicate(story_id, existing)

        metrics.STORIES_CREATED.inc()
        logger.info({'msg': 'story_created', 'story_id': story_id, 'size': len(data),
                     'content_type': content_type})
        return CreatedStory(story_id=story_id, blob_handle=blob_handle)

    async def get_metadata(self, story_id: str) -> StoryRecord:
        """Look up a story and count the view.

        The returned record carries the post-increment view count as stored.
        If the increment cannot be written the fetched record is returned as is.
        """
        record = await self.stories.find(story_id)
        if record is None:
            raise NotFound('Story not found')

        try:
            updated = await self.stories.increment_views(story_id)
        except PyMongoError as e:
            logger.warning({'msg': 'view_increment_failed', 'story_id': story_id, 'error': str(e)})
            return record
        if updated is None:
            logger.warning({'msg': 'view_increment_missed', 'story_id': story_id})
            return record

        metrics.STORY_VIEWS.inc()
        return updated

    async def find(self, story_id: str) -> StoryRecord:
        """Look up a story without counting a view"""
        record = await self.stories.find(story_id)
        if record is None:
            raise NotFound('Story not found')
        return record

    async def open_blob_stream(self, reference: str) -> BlobStream:
        """Open the image behind a blob handle or a public story id"""
        try:
            self.blobs.parse_handle(reference)
        except InvalidHandle:
            pass
        else:
            try:
                return await self.blobs.open_read(reference)
            except NotFound:
                logger.debug(f'No blob under {reference}, trying it as a story id')

        record = await self.stories.find(reference)
        if record is None:
            raise NotFound('Image not found')
        return await self.blobs.open_read(record.blob_handle)

    async def find_orphaned_blobs(self, older_than: timedelta = ORPHAN_GRACE_PERIOD) -> List[BlobInfo]:
        """List blobs that no story references and that are older than ``older_than``"""
        referenced = await self.stories.referenced_blob_handles()
        cutoff = utc_now() - older_than
        return [info async for info in self.blobs.list_blobs()
                if info.handle not in referenced and info.created_at <= cutoff]

    async def purge_orphaned_blobs(self, older_than: timedelta = ORPHAN_GRACE_PERIOD,
                                   dry_run: bool = False) -> List[BlobInfo]:
        orphans = await self.find_orphaned_blobs(older_than)
        if dry_run:
            return orphans
        purged = []
        for info in orphans:
            if await self.blobs.delete(info.handle):
                purged.append(info)
        logger.info({'msg': 'orphans_purged', 'count': len(purged)})
        return purged

    async def _discard_blob(self, blob_handle: str) -> None:
        try:
            await self.blobs.delete(blob_handle)
        except (PyMongoError, StorageWriteError) as e:
            logger.warning({'msg': 'blob_discard_failed', 'blob_handle': blob_handle, 'error': str(e)})
