"""
Error types raised across the story service.

Every layer raises one of these; the HTTP layer renders them with
``status_code`` and a machine-readable ``code``.
"""


class StoryError(Exception):
    """Base exception for all story errors"""

    status_code = 500
    code = 'internal_error'

    def __init__(self, message: str = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class InvalidInput(StoryError):
    """Invalid input"""

    status_code = 400
    code = 'invalid_input'


class PayloadTooLarge(InvalidInput):
    """Image too large"""

    status_code = 413
    code = 'payload_too_large'


class NotFound(StoryError):
    """Not found"""

    status_code = 404
    code = 'not_found'


class StorageWriteError(StoryError):
    """Failed to write image to storage"""

    code = 'storage_write_failed'


class StorageReadError(StoryError):
    """Failed to read image from storage"""

    code = 'storage_read_failed'


class MetadataWriteError(StoryError):
    """Failed to save story"""

    code = 'metadata_write_failed'


class DuplicateStoryId(StoryError):
    """Story id already exists"""

    status_code = 409
    code = 'duplicate_story_id'

    def __init__(self, story_id: str):
        self.story_id = story_id
        super().__init__(f'Story id already exists: {story_id}')


class InvalidHandle(ValueError):
    """Raised when a reference cannot be parsed as a blob handle"""
