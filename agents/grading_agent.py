"""Grading Agent — scores a submission against the assignment's answer key.

Builds one prompt from the assignment, its ordered questions and the
student's answers, sends it as a single-turn completion, and interprets the
reply. A reply that cannot be parsed is not an error: the raw text becomes
the feedback and the score falls back to 0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import ai_resilience
from agents.base import ReplyParseError, parse_json_reply
from models import Question

logger = logging.getLogger(__name__)

UNANSWERED = "(no answer)"

GRADER_SYSTEM = """You are a strict programming teacher grading homework.

GRADING RULES:
1. Compare every student answer with the standard answer EXACTLY.
2. An answer earns the full score of its question only if it matches the
   standard answer; anything else earns 0. No partial credit for answers
   that are close, partially right, or differently formatted.
3. For code, judge correctness against the task; style notes go in feedback.
4. The total score is the sum of the question scores.

Respond with ONLY a JSON object, no prose around it:
{
    "total_score": <int>,
    "ai_feedback": "<markdown feedback for the student>",
    "question_scores": {"<question id>": <int>, ...},
    "question_feedback": {"<question id>": "<short comment>", ...}
}"""


@dataclass
class GradeResult:
    total_score: int
    ai_feedback: str
    question_scores: dict | None = None
    question_feedback: dict | None = None
    parsed: bool = True
    raw: str = field(default="", repr=False)


def _coerce_int(value, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return default


class GradingAgent:
    """Grades one submission with a single model call."""

    AGENT_NAME = "grading_agent"

    def build_prompt(self, assignment: dict, questions: list[Question], submission: dict) -> str:
        answers = submission.get("answers") or {}
        lines = [
            "Grade the following homework.",
            f"Assignment title: {assignment.get('title', '')}",
            f"Assignment description: {assignment.get('description', '')}",
            "",
            "STANDARD ANSWER KEY:",
        ]
        for i, q in enumerate(questions, 1):
            lines.append(
                f"Question {i} [id={q.id}] ({q.type}, max score {q.score}): {q.content}"
            )
            if q.options:
                lines.append("  Options: " + " | ".join(q.options.to_list()))
            lines.append(f"  Standard answer: {q.answer}")

        lines += ["", "STUDENT ANSWERS:"]
        for i, q in enumerate(questions, 1):
            answer = answers.get(q.id)
            if answer is None or str(answer).strip() == "":
                answer = UNANSWERED
            lines.append(f"Question {i} [id={q.id}]: {answer}")

        code = (submission.get("code_content") or "").strip()
        if code:
            lines += ["", "STUDENT CODE:", code]

        lines += [
            "",
            "Grade by exact match with the standard answer (no partial credit), "
            "then reply with the JSON object described in your instructions.",
        ]
        return "\n".join(lines)

    def interpret_reply(self, raw: str) -> GradeResult:
        """Turn the model's reply into a GradeResult, degrading to raw text."""
        try:
            data = parse_json_reply(raw)
        except ReplyParseError as exc:
            logger.warning("Unparseable grading reply, storing raw text: %s", exc.reason)
            return GradeResult(total_score=0, ai_feedback=raw, parsed=False, raw=raw)

        scores = data.get("question_scores")
        feedback = data.get("question_feedback")
        if not isinstance(scores, dict):
            scores = None
        if not isinstance(feedback, dict):
            feedback = None

        if "total_score" in data:
            total = _coerce_int(data.get("total_score"))
        elif scores:
            total = sum(_coerce_int(v) for v in scores.values())
        else:
            total = 0

        text = data.get("ai_feedback", data.get("feedback", ""))
        return GradeResult(
            total_score=total,
            ai_feedback=text if isinstance(text, str) else str(text),
            question_scores=scores,
            question_feedback=feedback,
            raw=raw,
        )

    def grade(self, assignment: dict, questions: list[Question], submission: dict) -> GradeResult:
        """Call the model. A failed call raises UpstreamFailure."""
        prompt = self.build_prompt(assignment, questions, submission)
        raw = ai_resilience.complete(prompt, system=GRADER_SYSTEM)
        return self.interpret_reply(raw)
