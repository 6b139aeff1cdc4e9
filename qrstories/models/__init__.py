STORIES_COLLECTION = 'stories'
IMAGES_BUCKET = 'images'

# Import models so callers can use qrstories.models directly
from .stories import StoryRecord, CreatedStory, utc_now  # noqa: F401,E402
