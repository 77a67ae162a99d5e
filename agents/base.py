"""Base helpers shared across the model-backed agents."""

from __future__ import annotations

import json
import re

# A fence wrapping the entire reply; fences inside JSON strings do not match.
_WRAPPING_FENCE_RE = re.compile(r"^```(?:json|JSON)?\s*(.*?)\s*```$", re.DOTALL)
_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")

EXCERPT_CHARS = 200


class ReplyParseError(ValueError):
    """The model reply did not contain a usable JSON object."""

    def __init__(self, reason: str, raw: str):
        self.reason = reason
        self.excerpt = raw[:EXCERPT_CHARS]
        super().__init__(f"{reason}; reply began: {self.excerpt!r}")


def strip_code_fences(raw: str) -> str:
    """Return the body of a fence that wraps the whole reply, or the text unchanged."""
    text = raw.strip()
    match = _WRAPPING_FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text


def _outermost_object(text: str) -> str | None:
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def parse_json_reply(raw: str) -> dict:
    """Pull a JSON object out of free model text.

    Tries, in order: the reply as-is, the reply with a wrapping code fence
    removed, the outermost ``{...}`` span of the raw reply, and finally the
    first fenced block. Raises ReplyParseError carrying the last decode error
    and an excerpt of the raw reply.
    """
    raw = raw or ""
    candidates = [raw.strip(), strip_code_fences(raw), _outermost_object(raw)]
    fenced = _FENCE_RE.search(raw)
    if fenced:
        candidates.append(_outermost_object(fenced.group(1)))

    error = "empty reply"
    seen = set()
    for text in candidates:
        if not text or text in seen:
            continue
        seen.add(text)
        try:
            parsed = json.loads(text)
        except ValueError as exc:
            error = str(exc)
            continue
        if not isinstance(parsed, dict):
            raise ReplyParseError(f"expected a JSON object, got {type(parsed).__name__}", raw)
        return parsed

    if all(text is None for text in candidates[2:]):
        raise ReplyParseError(f"no JSON object found ({error})", raw)
    raise ReplyParseError(f"invalid JSON ({error})", raw)
