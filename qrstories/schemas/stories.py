from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

STORY_ID_PATTERN = r'^[A-Za-z0-9_-]{1,64}$'


class StoryCreateIn(BaseModel):
    imageData: Optional[str] = None
    storyId: Optional[str] = Field(default=None, pattern=STORY_ID_PATTERN)


class StoryCreateOut(BaseModel):
    success: bool = True
    storyId: str
    imageUrl: str


class StoryOut(BaseModel):
    success: bool = True
    storyId: str
    views: int
    contentType: str
    size: int
    createdAt: datetime
    imageUrl: str


class ImageUploadOut(BaseModel):
    id: str
    url: str


class ImageMetaOut(BaseModel):
    publicId: str
    filename: Optional[str]
    contentType: str
    uploadDate: datetime
    length: int
    views: int


class ErrorOut(BaseModel):
    success: bool = False
    error: str
    code: str
