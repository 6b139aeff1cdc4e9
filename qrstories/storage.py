"""
Blob storage for story images.

Images are written once and addressed by the handle the store assigns
(a BSON ObjectId, rendered as a 24-char hex string). Reads are streamed
through :class:`BlobStream`, which releases the underlying store resource
on every exit path.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorGridFSBucket
from pymongo.errors import PyMongoError

from .errors import InvalidHandle, NotFound, StorageReadError, StorageWriteError
from .models import IMAGES_BUCKET, utc_now

logger = logging.getLogger(__name__)

WRITE_CHUNK_SIZE = 255 * 1024  # GridFS default chunk size
READ_CHUNK_SIZE = 64 * 1024
DEFAULT_CONTENT_TYPE = 'application/octet-stream'


@dataclass(frozen=True)
class BlobInfo:
    handle: str
    size: int
    created_at: datetime
    content_type: str = DEFAULT_CONTENT_TYPE
    story_id: Optional[str] = None


class BlobStream:
    """Lazy, single-pass async iterator over a stored blob"""

    def __init__(self, handle: str, read_chunk: Callable[[], Awaitable[bytes]],
                 content_type: str = DEFAULT_CONTENT_TYPE, length: Optional[int] = None,
                 release: Optional[Callable[[], Awaitable[None]]] = None):
        self.handle = handle
        self.content_type = content_type
        self.length = length
        self._read_chunk = read_chunk
        self._release = release
        self._started = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        if self._started or self._closed:
            raise StorageReadError(f'Stream for {self.handle} already consumed')
        self._started = True
        try:
            while True:
                chunk = await self._read_chunk()
                if not chunk:
                    break
                yield chunk
        finally:
            await self.aclose()

    async def read(self) -> bytes:
        """Drain the stream into memory"""
        return b''.join([chunk async for chunk in self])

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._release is not None:
            await self._release()


def parse_handle(reference) -> ObjectId:
    if isinstance(reference, ObjectId):
        return reference
    if not isinstance(reference, str) or not ObjectId.is_valid(reference):
        raise InvalidHandle(f'Not a blob handle: {reference!r}')
    try:
        return ObjectId(reference)
    except (InvalidId, TypeError) as e:
        raise InvalidHandle(str(e)) from e


class BlobStore(ABC):
    """Streaming write/read of binary content keyed by a store-assigned handle"""

    def parse_handle(self, reference) -> ObjectId:
        return parse_handle(reference)

    @abstractmethod
    async def write(self, filename: str, data: bytes, content_type: str,
                    metadata: Optional[dict] = None) -> str:
        """Write ``data`` and return its handle once every byte is stored.

        Raises:
            StorageWriteError: the write did not complete.
        """

    @abstractmethod
    async def open_read(self, handle: str) -> BlobStream:
        """Open a stream over the blob.

        Raises:
            InvalidHandle: ``handle`` is not a handle of this store.
            NotFound: no blob is stored under ``handle``.
        """

    @abstractmethod
    async def delete(self, handle: str) -> bool:
        """Delete a blob, returning False if it did not exist"""

    @abstractmethod
    def list_blobs(self) -> AsyncIterator[BlobInfo]:
        """Iterate over every stored blob"""

    async def close(self) -> None:
        pass


async def _release_grid_out(grid_out) -> None:
    # motor delegates GridOut.close; depending on version it is sync or a coroutine
    close = getattr(grid_out, 'close', None)
    if close is None:
        return
    try:
        result = close()
        if inspect.isawaitable(result):
            await result
    except PyMongoError as e:
        logger.warning(f'Failed to release GridFS stream: {e}')


class GridFSBlobStore(BlobStore):
    """Blob store backed by a MongoDB GridFS bucket"""

    def __init__(self, db, bucket_name: str = IMAGES_BUCKET, write_chunk_size: int = WRITE_CHUNK_SIZE):
        self.bucket = AsyncIOMotorGridFSBucket(db, bucket_name=bucket_name)
        self.write_chunk_size = write_chunk_size

    async def write(self, filename, data, content_type, metadata=None):
        file_metadata = dict(metadata or {})
        file_metadata['contentType'] = content_type
        try:
            grid_in = self.bucket.open_upload_stream(filename, metadata=file_metadata)
        except PyMongoError as e:
            raise StorageWriteError(f'Upload failed: {e}') from e

        try:
            for start in range(0, len(data), self.write_chunk_size):
                await grid_in.write(data[start:start + self.write_chunk_size])
            await grid_in.close()
        except PyMongoError as e:
            logger.error(f'GridFS upload error: {e}')
            try:
                await grid_in.abort()
            except PyMongoError as abort_error:
                logger.warning(f'GridFS abort failed: {abort_error}')
            raise StorageWriteError(f'Upload failed: {e}') from e
        return str(grid_in._id)

    async def open_read(self, handle):
        file_id = self.parse_handle(handle)
        try:
            grid_out = await self.bucket.open_download_stream(file_id)
        except NoFile:
            raise NotFound(f'Image not found: {handle}')
        except PyMongoError as e:
            raise StorageReadError(f'Download failed: {e}') from e

        async def read_chunk() -> bytes:
            try:
                return await grid_out.readchunk()
            except PyMongoError as e:
                logger.error(f'Download stream error: {e}')
                raise StorageReadError(f'Download failed: {e}') from e

        metadata = grid_out.metadata or {}
        return BlobStream(
            str(file_id),
            read_chunk,
            content_type=metadata.get('contentType') or DEFAULT_CONTENT_TYPE,
            length=grid_out.length,
            release=lambda: _release_grid_out(grid_out),
        )

    async def delete(self, handle):
        file_id = self.parse_handle(handle)
        try:
            await self.bucket.delete(file_id)
            return True
        except NoFile:
            return False

    async def list_blobs(self):
        async for grid_out in self.bucket.find({}):
            metadata = grid_out.metadata or {}
            uploaded = grid_out.upload_date
            if uploaded.tzinfo is None:
                uploaded = uploaded.replace(tzinfo=timezone.utc)
            yield BlobInfo(
                handle=str(grid_out._id),
                size=grid_out.length,
                created_at=uploaded,
                content_type=metadata.get('contentType') or DEFAULT_CONTENT_TYPE,
                story_id=metadata.get('storyId'),
            )


class MemoryBlobStore(BlobStore):
    """In-memory blob store for development and testing"""

    def __init__(self, read_chunk_size: int = READ_CHUNK_SIZE):
        self.read_chunk_size = read_chunk_size
        self._blobs: Dict[str, bytes] = {}
        self._info: Dict[str, BlobInfo] = {}
        self.open_streams = 0

    def __len__(self) -> int:
        return len(self._blobs)

    async def write(self, filename, data, content_type, metadata=None):
        handle = str(ObjectId())
        buffer = bytearray()
        for start in range(0, len(data), WRITE_CHUNK_SIZE):
            buffer.extend(data[start:start + WRITE_CHUNK_SIZE])
        self._blobs[handle] = bytes(buffer)
        self._info[handle] = BlobInfo(
            handle=handle,
            size=len(buffer),
            created_at=utc_now(),
            content_type=content_type,
            story_id=(metadata or {}).get('storyId'),
        )
        return handle

    async def open_read(self, handle):
        key = str(self.parse_handle(handle))
        data = self._blobs.get(key)
        if data is None:
            raise NotFound(f'Image not found: {handle}')

        view = memoryview(data)
        position = 0

        async def read_chunk() -> bytes:
            nonlocal position
            chunk = bytes(view[position:position + self.read_chunk_size])
            position += len(chunk)
            return chunk

        async def release() -> None:
            self.open_streams -= 1

        self.open_streams += 1
        return BlobStream(key, read_chunk, content_type=self._info[key].content_type,
                          length=len(data), release=release)

    async def delete(self, handle):
        key = str(self.parse_handle(handle))
        self._info.pop(key, None)
        return self._blobs.pop(key, None) is not None

    async def list_blobs(self):
        for info in sorted(self._info.values(), key=lambda info: (info.created_at, info.handle)):
            yield info

    def backdate(self, handle: str, created_at: datetime) -> None:
        """Rewrite a blob's creation time (used to age blobs in tests)"""
        info = self._info[handle]
        self._info[handle] = BlobInfo(info.handle, info.size, created_at, info.content_type, info.story_id)
