import base64
import os
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Configure test environment: in-memory stores unless a test opts into MongoDB
os.environ.setdefault('MONGO_URI', 'memory://')

from qrstories.config import Settings  # noqa: E402
from qrstories.crud import MemoryStoryRepository  # noqa: E402
from qrstories.main import create_app  # noqa: E402
from qrstories.service import StoryService  # noqa: E402
from qrstories.storage import MemoryBlobStore  # noqa: E402

# 8-byte PNG signature followed by a fake IHDR chunk
PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00\x00\x00\rIHDR' + bytes(range(64))
PNG_B64 = base64.b64encode(PNG_BYTES).decode()
PNG_DATA_URI = 'data:image/png;base64,' + PNG_B64


@pytest.fixture
def blobs():
    return MemoryBlobStore(read_chunk_size=16)


@pytest.fixture
def stories():
    return MemoryStoryRepository()


@pytest.fixture
def service(blobs, stories):
    return StoryService(blobs, stories, max_image_bytes=1024 * 1024)


@pytest.fixture
def settings():
    return Settings(mongo_uri='memory://', log_level='WARNING')


@pytest.fixture
def app(settings, service):
    return create_app(settings=settings, service=service)


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as ac:
        yield ac
