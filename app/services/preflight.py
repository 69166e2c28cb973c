"""Rule-based clarification questions for an idea before a run starts."""

import uuid
from datetime import datetime
from typing import List, Optional

from app.database import utcnow
from app.schemas.run import PreflightQuestion, PreflightResponse

SHORT_IDEA_CHARS = 50

USER_KEYWORDS = ["user", "customer", "client", "audience", "people", "for"]
PROBLEM_KEYWORDS = ["problem", "issue", "challenge", "pain", "solve", "fix"]
VAGUE_SCOPE_KEYWORDS = ["platform", "system", "ecosystem", "framework", "infrastructure"]


def generate_preflight_id(now: Optional[datetime] = None) -> str:
    """Preflight id of the form pf_YYYY-MM-DD_xxxxxxxx."""
    now = now or utcnow()
    return f"pf_{now:%Y-%m-%d}_{uuid.uuid4().hex[:8]}"


def generate_clarification_questions(idea_text: str) -> List[PreflightQuestion]:
    """Return i18n-keyed questions for whatever the idea text leaves unclear."""
    questions = []
    lower_text = idea_text.lower()

    if len(idea_text) < SHORT_IDEA_CHARS:
        questions.append(PreflightQuestion(
            id="q_detail",
            question="questions.detail.question",
            required=True,
            default_answers=[
                "questions.detail.answers.addContext",
                "questions.detail.answers.provideExamples",
            ],
        ))

    if not any(keyword in lower_text for keyword in USER_KEYWORDS):
        questions.append(PreflightQuestion(
            id="q_target_user",
            question="questions.targetUser.question",
            required=True,
            default_answers=[
                "questions.targetUser.answers.productManager",
                "questions.targetUser.answers.soloFounder",
                "questions.targetUser.answers.techLead",
            ],
        ))

    if not any(keyword in lower_text for keyword in PROBLEM_KEYWORDS):
        questions.append(PreflightQuestion(
            id="q_problem",
            question="questions.problem.question",
            required=False,
            default_answers=[
                "questions.problem.answers.efficiency",
                "questions.problem.answers.cost",
                "questions.problem.answers.userExperience",
            ],
        ))

    if any(keyword in lower_text for keyword in VAGUE_SCOPE_KEYWORDS):
        questions.append(PreflightQuestion(
            id="q_scope",
            question="questions.scope.question",
            required=True,
            default_answers=[
                "questions.scope.answers.mvp",
                "questions.scope.answers.fullProduct",
                "questions.scope.answers.prototype",
            ],
        ))

    return questions


def run_preflight(idea_text: str) -> PreflightResponse:
    """Build the preflight response for an idea."""
    questions = generate_clarification_questions(idea_text)
    return PreflightResponse(
        preflight_id=generate_preflight_id(),
        ready=len(questions) == 0,
        questions=questions,
    )
