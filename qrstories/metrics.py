import logging

from prometheus_client import Counter, start_http_server

logger = logging.getLogger(__name__)

STORIES_CREATED = Counter('qrstories_stories_created_total', 'Stories saved')
STORY_DUPLICATES = Counter('qrstories_story_duplicates_total', 'Creates answered with an existing story id')
STORY_VIEWS = Counter('qrstories_story_views_total', 'Story metadata reads')
BLOB_BYTES_WRITTEN = Counter('qrstories_blob_bytes_written_total', 'Image bytes written to blob storage')


def init_metrics(port: int = 0) -> bool:
    """Start the Prometheus exporter; a port of 0 leaves it disabled"""
    if not port:
        return False
    try:
        start_http_server(port)
        logger.info(f'Prometheus metrics server started on port {port}')
        return True
    except OSError as e:
        logger.warning(f'Prometheus start failed: {e}')
        return False
