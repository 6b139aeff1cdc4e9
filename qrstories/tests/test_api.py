import asyncio
from urllib.parse import parse_qs, urlsplit

import pytest
from httpx import ASGITransport, AsyncClient

from qrstories.errors import PayloadTooLarge
from qrstories.ids import is_story_id
from qrstories.main import create_app
from qrstories.routes.uploads import read_upload
from qrstories.service import StoryService

from .conftest import PNG_B64, PNG_BYTES, PNG_DATA_URI


@pytest.mark.asyncio
async def test_root_and_health(client):
    res = await client.get('/')
    assert res.status_code == 200
    assert res.text == 'QR image backend running'
    res = await client.get('/healthz')
    assert res.json() == {'status': 'ok'}


@pytest.mark.asyncio
async def test_story_scenario(client):
    res = await client.post('/api/stories', json={'imageData': PNG_DATA_URI})
    assert res.status_code == 201, res.text
    body = res.json()
    assert body['success'] is True
    story_id = body['storyId']
    assert is_story_id(story_id)
    assert body['imageUrl'] == f'/api/images/{story_id}'

    res = await client.get(f'/api/stories/{story_id}')
    assert res.status_code == 200
    story = res.json()
    assert story['storyId'] == story_id
    assert story['views'] == 1
    assert story['contentType'] == 'image/png'
    assert story['size'] == len(PNG_BYTES)
    assert 'blobHandle' not in story

    res = await client.get(f'/api/stories/{story_id}')
    assert res.json()['views'] == 2

    res = await client.get(f'/api/images/{story_id}')
    assert res.status_code == 200
    assert res.headers['content-type'] == 'image/png'
    assert res.headers['content-length'] == str(len(PNG_BYTES))
    assert res.content == PNG_BYTES


@pytest.mark.asyncio
async def test_empty_image_data_is_rejected(client, stories):
    res = await client.post('/api/stories', json={'imageData': ''})
    assert res.status_code == 400
    assert res.json() == {'success': False, 'error': 'No image data provided', 'code': 'invalid_input'}
    assert len(stories) == 0

    res = await client.post('/api/stories', json={})
    assert res.status_code == 400
    assert res.json()['error'] == 'No image data provided'


@pytest.mark.asyncio
async def test_invalid_base64_is_rejected(client):
    res = await client.post('/api/stories', json={'imageData': 'data:image/png;base64,@@@'})
    assert res.status_code == 400
    assert res.json()['error'] == 'Invalid image data'


@pytest.mark.asyncio
async def test_caller_supplied_story_id_is_idempotent(client, stories):
    payload = {'imageData': PNG_B64, 'storyId': 'qrs_client0001'}
    first = await client.post('/api/stories', json=payload)
    second = await client.post('/api/stories', json=payload)
    assert first.status_code == second.status_code == 201
    assert first.json()['storyId'] == second.json()['storyId'] == 'qrs_client0001'
    assert len(stories) == 1


@pytest.mark.asyncio
async def test_malformed_story_id_is_bad_input(client):
    res = await client.post('/api/stories', json={'imageData': PNG_B64, 'storyId': '../etc/passwd'})
    assert res.status_code == 400
    assert res.json()['code'] == 'invalid_input'


@pytest.mark.asyncio
async def test_oversized_image_is_413(settings, blobs, stories):
    app = create_app(settings=settings, service=StoryService(blobs, stories, max_image_bytes=10))
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as ac:
        res = await ac.post('/api/stories', json={'imageData': PNG_B64})
    assert res.status_code == 413
    assert res.json()['code'] == 'payload_too_large'


@pytest.mark.asyncio
async def test_unknown_story_is_404(client):
    res = await client.get('/api/stories/qrs_missing000')
    assert res.status_code == 404
    assert res.json() == {'success': False, 'error': 'Story not found', 'code': 'not_found'}

    res = await client.get('/api/images/qrs_missing000')
    assert res.status_code == 404
    assert res.json()['code'] == 'not_found'

    res = await client.get('/view/qrs_missing000')
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_image_by_blob_handle(client, service):
    created = await service.create(PNG_DATA_URI)
    res = await client.get(f'/api/images/{created.blob_handle}')
    assert res.status_code == 200
    assert res.content == PNG_BYTES


@pytest.mark.asyncio
async def test_view_redirects_to_reveal_page(client, service):
    created = await service.create(PNG_DATA_URI)
    res = await client.get(f'/view/{created.story_id}', follow_redirects=False)
    assert res.status_code == 307

    location = urlsplit(res.headers['location'])
    assert location.path == '/static/reveal.html'
    query = parse_qs(location.query)
    assert query['image'] == [f'/api/images/{created.blob_handle}']
    assert query['story'] == [created.story_id]

    page = await client.get(location.path)
    assert page.status_code == 200
    assert 'text/html' in page.headers['content-type']


@pytest.mark.asyncio
async def test_multipart_upload_flow(client):
    res = await client.post('/upload', files={'image': ('qr.jpg', PNG_BYTES, 'image/jpeg')})
    assert res.status_code == 200, res.text
    body = res.json()
    assert body['url'] == f"/image/{body['id']}"

    res = await client.get(body['url'])
    assert res.status_code == 200
    assert res.headers['content-type'] == 'image/jpeg'
    assert res.content == PNG_BYTES

    res = await client.get(f"{body['url']}/meta")
    assert res.status_code == 200
    meta = res.json()
    assert meta['publicId'] == body['id']
    assert meta['filename'] == 'qr.jpg'
    assert meta['contentType'] == 'image/jpeg'
    assert meta['length'] == len(PNG_BYTES)
    assert meta['views'] == 0


@pytest.mark.asyncio
async def test_upload_without_file(client):
    res = await client.post('/upload', data={'other': 'x'})
    assert res.status_code == 400
    assert res.json()['error'] == 'No image provided. Use form field name "image".'


@pytest.mark.asyncio
async def test_legacy_image_routes_404(client):
    assert (await client.get('/image/qrs_missing000')).status_code == 404
    assert (await client.get('/image/qrs_missing000/meta')).status_code == 404


@pytest.mark.asyncio
async def test_story_id_naming_another_blob_is_rejected(client, service):
    first = await service.create(PNG_DATA_URI)
    res = await client.post('/api/stories', json={'imageData': 'aGVsbG8=', 'storyId': first.blob_handle})
    assert res.status_code == 400
    assert res.json()['code'] == 'invalid_input'

    res = await client.get(f'/api/images/{first.blob_handle}')
    assert res.status_code == 200
    assert res.content == PNG_BYTES


@pytest.mark.asyncio
async def test_oversized_upload_is_413(settings, blobs, stories):
    app = create_app(settings=settings, service=StoryService(blobs, stories, max_image_bytes=10))
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as ac:
        res = await ac.post('/upload', files={'image': ('qr.png', PNG_BYTES, 'image/png')})
    assert res.status_code == 413
    assert res.json()['code'] == 'payload_too_large'
    assert len(blobs) == 0


class RecordingUpload:
    def __init__(self, content):
        self.content = content
        self.requested = []

    async def read(self, size=-1):
        self.requested.append(size)
        return self.content if size < 0 else self.content[:size]


@pytest.mark.asyncio
async def test_read_upload_stops_past_the_limit():
    upload = RecordingUpload(b'x' * 4096)
    with pytest.raises(PayloadTooLarge):
        await read_upload(upload, 100)
    assert upload.requested == [101]

    upload = RecordingUpload(b'x' * 100)
    assert await read_upload(upload, 100) == b'x' * 100


@pytest.mark.asyncio
async def test_client_disconnect_mid_stream_releases_blob(app, service, blobs):
    image = bytes(range(256)) * 256
    created = await service.create(image, content_type='image/png')
    path = f'/api/images/{created.story_id}'

    first_chunk = asyncio.Event()
    never = asyncio.Event()
    received = []
    requests = []

    async def receive():
        if not requests:
            requests.append(1)
            return {'type': 'http.request', 'body': b'', 'more_body': False}
        await first_chunk.wait()
        return {'type': 'http.disconnect'}

    async def send(message):
        if message['type'] == 'http.response.body':
            received.append(message.get('body', b''))
            if message.get('more_body'):
                first_chunk.set()
                await never.wait()

    scope = {
        'type': 'http',
        'asgi': {'version': '3.0', 'spec_version': '2.3'},
        'http_version': '1.1',
        'method': 'GET',
        'scheme': 'http',
        'path': path,
        'raw_path': path.encode(),
        'root_path': '',
        'query_string': b'',
        'headers': [(b'host', b'test')],
        'client': ('127.0.0.1', 50000),
        'server': ('test', 80),
    }
    await asyncio.wait_for(app(scope, receive, send), 5)

    assert first_chunk.is_set()
    assert sum(len(chunk) for chunk in received) < len(image)
    assert blobs.open_streams == 0
