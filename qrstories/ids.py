import re
import secrets
import string

# nanoid's URL-safe alphabet
ALPHABET = string.ascii_letters + string.digits + '_-'


def generate_story_id(prefix: str = 'qrs_', length: int = 10) -> str:
    """Generate a short, URL-safe public story id, e.g. ``qrs_Ab3dE9fQ1z``"""
    if length < 1:
        raise ValueError('length must be positive')
    return prefix + ''.join(secrets.choice(ALPHABET) for _ in range(length))


def is_story_id(value: str, prefix: str = 'qrs_', length: int = 10) -> bool:
    pattern = re.escape(prefix) + '[A-Za-z0-9_-]{%d}' % length
    return re.fullmatch(pattern, value or '') is not None


class StoryIdGenerator:
    """Callable that binds the configured prefix and length"""

    def __init__(self, prefix: str = 'qrs_', length: int = 10):
        self.prefix = prefix
        self.length = length

    def __call__(self) -> str:
        return generate_story_id(self.prefix, self.length)

    def matches(self, value: str) -> bool:
        return is_story_id(value, self.prefix, self.length)
