import asyncio
import logging

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from .config import Settings
from .crud import MemoryStoryRepository, MongoStoryRepository, StoryRepository
from .storage import BlobStore, GridFSBlobStore, MemoryBlobStore

logger = logging.getLogger(__name__)


class MongoBackend:
    """Owns the MongoDB client, the GridFS bucket and the stories collection.

    Built once at startup and handed to the StoryService; ``close()`` tears
    the connection down (used on shutdown and in tests).
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.client = None
        self.blobs: BlobStore = None
        self.stories: StoryRepository = None

    @property
    def connected(self) -> bool:
        return self.stories is not None

    async def connect(self) -> 'MongoBackend':
        """Connect to MongoDB, retrying a few times before giving up"""
        if not self.settings.mongo_uri:
            raise RuntimeError('MONGO_URI missing. Set it in environment variables.')
        if self.settings.uses_memory_store:
            logger.warning('Using in-memory story storage; data is lost on restart')
            self.blobs = MemoryBlobStore()
            self.stories = MemoryStoryRepository()
            return self

        max_retries = max(1, self.settings.mongo_connect_retries)
        retry_delay = self.settings.mongo_retry_delay

        for attempt in range(max_retries):
            try:
                logger.info(f'Attempting to connect to MongoDB (attempt {attempt + 1}/{max_retries})')
                self.client = AsyncIOMotorClient(
                    self.settings.mongo_uri,
                    serverSelectionTimeoutMS=5000,
                    connectTimeoutMS=5000,
                    maxPoolSize=50,
                    retryWrites=True,
                    retryReads=True,
                    tz_aware=True,
                )
                await self.client.admin.command('ping')
                db = self.client[self.settings.db_name]
                self.blobs = GridFSBlobStore(db)
                self.stories = MongoStoryRepository(db)
                await self.stories.ensure_indexes()
                logger.info('MongoDB connected successfully')
                return self

            except PyMongoError as e:
                logger.warning(f'MongoDB startup attempt {attempt + 1} failed: {e}')
                if self.client is not None:
                    self.client.close()
                    self.client = None
                if attempt < max_retries - 1:
                    logger.info(f'Retrying MongoDB connection in {retry_delay} seconds...')
                    await asyncio.sleep(retry_delay)
                else:
                    logger.error('Failed to connect to MongoDB after all retries')
                    raise

    async def close(self) -> None:
        """Close the MongoDB connection"""
        if self.blobs is not None:
            await self.blobs.close()
        if self.stories is not None:
            await self.stories.close()
        if self.client is not None:
            self.client.close()
            logger.info('MongoDB connection closed')
        self.client = None
        self.blobs = None
        self.stories = None
