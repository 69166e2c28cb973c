"""Tests for input validation and message truncation."""

from app.services.validators import TRUNCATION_MARKER, truncate_message, validate_idea_text


def test_truncate_long_message():
    """Test that a 750-character message is cut to exactly 700."""
    message = "a" * 750

    truncated = truncate_message(message)

    assert len(truncated) == 700
    assert truncated.endswith(TRUNCATION_MARKER)
    assert truncated[:697] == message[:697]


def test_truncate_keeps_short_message():
    """Test that messages within the limit are unmodified."""
    message = "The Refiner made a fair point."

    assert truncate_message(message) == message


def test_truncate_exact_limit():
    """Test that a message of exactly 700 characters is unmodified."""
    message = "b" * 700

    assert truncate_message(message) == message


def test_truncate_custom_limit():
    """Test truncation with an explicit limit."""
    assert truncate_message("abcdefghij", limit=8) == "abcde..."


def test_validate_idea_text_valid():
    """Test that ideas within bounds pass."""
    assert validate_idea_text("A" * 10) is None
    assert validate_idea_text("A" * 5000) is None


def test_validate_idea_text_empty():
    """Test that empty and whitespace-only ideas are rejected."""
    assert validate_idea_text("") == "Idea text cannot be empty"
    assert validate_idea_text("   \n ") == "Idea text cannot be empty"
    assert validate_idea_text(None) == "Idea text cannot be empty"


def test_validate_idea_text_bounds():
    """Test the minimum and maximum length."""
    assert "at least 10" in validate_idea_text("A" * 9)
    assert "5000" in validate_idea_text("A" * 5001)
