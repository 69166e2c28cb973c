"""Input validation and message length enforcement."""

from typing import Optional

from app.config import settings

TRUNCATION_MARKER = "..."


def validate_idea_text(text: Optional[str]) -> Optional[str]:
    """
    Validate idea text length.

    Args:
        text: Raw idea text from the request

    Returns:
        An error message, or None if the text is valid
    """
    if not text or not text.strip():
        return "Idea text cannot be empty"
    if len(text) < settings.IDEA_MIN_CHARS:
        return f"Idea text must be at least {settings.IDEA_MIN_CHARS} characters"
    if len(text) > settings.IDEA_MAX_CHARS:
        return f"Idea text must not exceed {settings.IDEA_MAX_CHARS} characters"
    return None


def truncate_message(message: str, limit: Optional[int] = None) -> str:
    """
    Hard-truncate a message to ``limit`` characters, ending with a marker.

    Messages within the limit are returned unmodified.

    Args:
        message: Message text
        limit: Maximum length (defaults to MESSAGE_MAX_CHARS)

    Returns:
        Message of at most ``limit`` characters
    """
    if limit is None:
        limit = settings.MESSAGE_MAX_CHARS

    if len(message) <= limit:
        return message

    return message[: limit - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER
