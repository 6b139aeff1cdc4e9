import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

DEFAULT_DB_NAME = 'qrdatabase'
DEFAULT_MAX_IMAGE_BYTES = 10 * 1024 * 1024  # 10MB


def _split_origins(value: str) -> List[str]:
    return [origin.strip() for origin in value.split(',') if origin.strip()]


@dataclass(frozen=True)
class Settings:
    mongo_uri: Optional[str] = None
    db_name: str = DEFAULT_DB_NAME
    story_id_prefix: str = 'qrs_'
    story_id_length: int = 10
    max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES
    default_content_type: str = 'image/png'
    cors_origins: List[str] = field(default_factory=lambda: ['*'])
    reveal_page_url: str = '/static/reveal.html'
    metrics_port: int = 0
    host: str = '0.0.0.0'
    port: int = 5000
    log_level: str = 'INFO'
    mongo_connect_retries: int = 3
    mongo_retry_delay: float = 3.0

    @property
    def uses_memory_store(self) -> bool:
        return bool(self.mongo_uri) and self.mongo_uri.startswith('memory://')


def load_settings() -> Settings:
    """Read settings from the environment (and a .env file, if present)"""
    load_dotenv()
    return Settings(
        mongo_uri=os.getenv('MONGO_URI'),
        db_name=os.getenv('DB_NAME', DEFAULT_DB_NAME),
        story_id_prefix=os.getenv('STORY_ID_PREFIX', 'qrs_'),
        story_id_length=int(os.getenv('STORY_ID_LENGTH', '10')),
        max_image_bytes=int(os.getenv('MAX_IMAGE_BYTES', str(DEFAULT_MAX_IMAGE_BYTES))),
        default_content_type=os.getenv('DEFAULT_CONTENT_TYPE', 'image/png'),
        cors_origins=_split_origins(os.getenv('CORS_ORIGINS', '*')),
        reveal_page_url=os.getenv('REVEAL_PAGE_URL', '/static/reveal.html'),
        metrics_port=int(os.getenv('METRICS_PORT', '0')),
        host=os.getenv('HOST', '0.0.0.0'),
        port=int(os.getenv('PORT', '5000')),
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        mongo_connect_retries=int(os.getenv('MONGO_CONNECT_RETRIES', '3')),
        mongo_retry_delay=float(os.getenv('MONGO_RETRY_DELAY', '3')),
    )
