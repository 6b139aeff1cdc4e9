import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Set

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from .errors import DuplicateStoryId, MetadataWriteError
from .models import STORIES_COLLECTION, StoryRecord

logger = logging.getLogger(__name__)


class StoryRepository(ABC):
    """Persistent mapping story id -> StoryRecord, unique on story id"""

    @abstractmethod
    async def insert(self, record: StoryRecord) -> None:
        """Insert a new record.

        Raises:
            DuplicateStoryId: a record with the same story id exists.
            MetadataWriteError: any other write failure.
        """

    @abstractmethod
    async def find(self, story_id: str) -> Optional[StoryRecord]:
        ...

    @abstractmethod
    async def increment_views(self, story_id: str, delta: int = 1) -> Optional[StoryRecord]:
        """Atomically add ``delta`` to the view count and return the updated record"""

    @abstractmethod
    async def referenced_blob_handles(self) -> Set[str]:
        ...

    async def ensure_indexes(self) -> None:
        pass

    async def close(self) -> None:
        pass


class MongoStoryRepository(StoryRepository):

    def __init__(self, db, collection_name: str = STORIES_COLLECTION):
        self.collection = db[collection_name]

    async def ensure_indexes(self):
        await self.collection.create_index([('storyId', ASCENDING)], unique=True, name='uix_story_id')
        await self.collection.create_index([('blobHandle', ASCENDING)], name='ix_blob_handle')

    async def insert(self, record):
        try:
            await self.collection.insert_one(record.to_document())
        except DuplicateKeyError:
            raise DuplicateStoryId(record.story_id)
        except PyMongoError as e:
            raise MetadataWriteError(f'Failed to save story: {e}') from e

    async def find(self, story_id):
        doc = await self.collection.find_one({'storyId': story_id})
        if not doc:
            return None
        return StoryRecord.from_document(doc)

    async def increment_views(self, story_id, delta=1):
        doc = await self.collection.find_one_and_update(
            {'storyId': story_id},
            {'$inc': {'views': delta}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return StoryRecord.from_document(doc)

    async def referenced_blob_handles(self):
        handles = await self.collection.distinct('blobHandle')
        return {str(handle) for handle in handles}


class MemoryStoryRepository(StoryRepository):
    """Dict-backed repository for development and testing"""

    def __init__(self):
        self._records: Dict[str, StoryRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    async def insert(self, record):
        if record.story_id in self._records:
            raise DuplicateStoryId(record.story_id)
        self._records[record.story_id] = record

    async def find(self, story_id):
        return self._records.get(story_id)

    async def increment_views(self, story_id, delta=1):
        record = self._records.get(story_id)
        if record is None:
            return None
        record = record.with_views(record.views + delta)
        self._records[story_id] = record
        return record

    async def referenced_blob_handles(self):
        return {record.blob_handle for record in self._records.values()}
