"""Chat Agent — Q&A assistant forwarding a conversation to the model."""

from __future__ import annotations

import ai_resilience

CHAT_SYSTEM_PROMPT = """You are a patient programming teaching assistant.

Answer students' programming questions clearly:
- explain the concept first, then show a short example when it helps
- point out the likely cause when the student shares an error
- keep answers focused; use markdown code blocks for code
- if a question is unrelated to programming or study, say so politely"""


class ChatAgent:
    AGENT_NAME = "chat_agent"

    def respond(self, messages: list[dict]) -> str:
        """Generate a reply given the full conversation history.

        Args:
            messages: List of dicts with 'role' and 'content' keys, starting
                with the system prompt.

        Returns:
            Assistant reply text.
        """
        history = [{"role": m["role"], "content": m["content"]} for m in messages]
        return ai_resilience.complete(messages=history)
