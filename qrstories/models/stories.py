from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StoryRecord:
    """Metadata row mapping a public story id to its stored image"""

    story_id: str
    blob_handle: str
    content_type: str
    size: int
    created_at: datetime = field(default_factory=utc_now)
    views: int = 0
    filename: Optional[str] = None

    def with_views(self, views: int) -> 'StoryRecord':
        return replace(self, views=views)

    def to_document(self) -> dict:
        return {
            'storyId': self.story_id,
            'blobHandle': ObjectId(self.blob_handle),
            'contentType': self.content_type,
            'size': self.size,
            'createdAt': self.created_at,
            'views': self.views,
            'filename': self.filename,
        }

    @classmethod
    def from_document(cls, doc: dict) -> 'StoryRecord':
        created_at = doc.get('createdAt') or utc_now()
        # pymongo hands back naive datetimes unless the client is tz_aware
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            story_id=doc['storyId'],
            blob_handle=str(doc['blobHandle']),
            content_type=doc.get('contentType') or 'application/octet-stream',
            size=int(doc.get('size') or 0),
            created_at=created_at,
            views=int(doc.get('views') or 0),
            filename=doc.get('filename'),
        )


@dataclass(frozen=True)
class CreatedStory:
    story_id: str
    blob_handle: str
    duplicate: bool = False
