"""Assignment Generation Agent — drafts an assignment from a topic.

Asks the model for a JSON object with a title, a description and a question
list, then validates the shape before anything is persisted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import ai_resilience
from agents.base import ReplyParseError, parse_json_reply
from errors import UpstreamFailure
from models import QUESTION_TYPES

logger = logging.getLogger(__name__)

GENERATION_PROMPT = """Create a programming assignment about "{topic}" at {difficulty} difficulty.
Include 3-5 questions mixing multiple-choice, fill-in-the-blank and coding questions.

Return ONLY a JSON object with this shape:
{{
    "title": "<assignment title>",
    "description": "<one paragraph describing the assignment>",
    "questions": [
        {{
            "type": "choice" | "fill" | "code",
            "content": "<question text>",
            "options": ["A. ...", "B. ...", "C. ...", "D. ..."],
            "answer": "<standard answer>",
            "score": <int points>
        }}
    ]
}}
Only choice questions have options. Scores should add up to 100."""


@dataclass
class GeneratedAssignment:
    title: str
    description: str
    questions: list[dict] = field(default_factory=list)


class AssignmentGenAgent:
    AGENT_NAME = "assignment_gen_agent"

    def generate(self, topic: str, difficulty: str) -> GeneratedAssignment:
        prompt = GENERATION_PROMPT.format(topic=topic, difficulty=difficulty or "medium")
        raw = ai_resilience.complete(prompt)
        return self.parse(raw)

    def parse(self, raw: str) -> GeneratedAssignment:
        try:
            data = parse_json_reply(raw)
        except ReplyParseError as exc:
            logger.warning("Could not parse generated assignment: %s", exc.reason)
            raise UpstreamFailure(
                f"could not parse generated assignment: {exc.reason}; reply began: {exc.excerpt!r}"
            ) from exc

        questions = []
        for q in data.get("questions") or []:
            if not isinstance(q, dict) or not q.get("content"):
                continue
            qtype = str(q.get("type", "fill")).lower()
            if qtype not in QUESTION_TYPES:
                qtype = "fill"
            try:
                score = int(q.get("score") or 0)
            except (TypeError, ValueError):
                score = 0
            questions.append({
                "type": qtype,
                "content": str(q["content"]),
                "options": q.get("options"),
                "answer": "" if q.get("answer") is None else str(q.get("answer")),
                "score": score,
            })

        return GeneratedAssignment(
            title=str(data.get("title") or "Untitled assignment"),
            description=str(data.get("description") or ""),
            questions=questions,
        )
