"""Tests for preflight clarification questions."""

from app.services.preflight import generate_clarification_questions, run_preflight


def question_ids(idea_text):
    return [question.id for question in generate_clarification_questions(idea_text)]


def test_detailed_idea_is_ready():
    """Test that a specific idea needs no clarification."""
    idea = (
        "A scheduling tool for restaurant managers that solves the problem of "
        "last-minute shift swaps by letting staff trade shifts with approval."
    )

    response = run_preflight(idea)

    assert response.ready is True
    assert response.questions == []


def test_short_idea_asks_for_detail():
    """Test that ideas under 50 characters ask for more detail."""
    assert "q_detail" in question_ids("Meal planner for nurses")


def test_missing_user_and_problem():
    """Test questions for an idea naming no user and no problem."""
    ids = question_ids("An automated recipe generator that builds weekly grocery lists from pantry photos")

    assert ids == ["q_target_user", "q_problem"]


def test_problem_question_optional():
    """Test that only the problem question is optional."""
    questions = generate_clarification_questions("A new ecosystem app")

    required = {question.id: question.required for question in questions}
    assert required == {"q_detail": True, "q_target_user": True, "q_problem": False, "q_scope": True}


def test_vague_scope():
    """Test that platform-style ideas ask about scope."""
    assert "q_scope" in question_ids("An ecosystem for customers to solve billing problems across vendors")
