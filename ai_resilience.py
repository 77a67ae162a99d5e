"""AI Resilience Layer — Retry and Circuit Breaker around the language model.

Provides a unified resilient_llm_call() entry point that wraps every model
call with retry on transient errors and per-provider circuit breaking, and
complete(), which reads provider settings from the Flask app config.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from flask import current_app
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from errors import UpstreamFailure

logger = logging.getLogger(__name__)


# ── Circuit Breaker ─────────────────────────────────────────

@dataclass
class _ProviderState:
    failures: int = 0
    state: str = "closed"  # closed | open | half_open
    last_failure_time: float = 0.0


class CircuitBreaker:
    """Per-provider state machine: closed -> open -> half_open -> closed."""

    FAILURE_THRESHOLD = 5
    RECOVERY_TIMEOUT = 60  # seconds

    def __init__(self) -> None:
        self._providers: dict[str, _ProviderState] = {}
        self._lock = threading.Lock()

    def _get_state(self, provider: str) -> _ProviderState:
        if provider not in self._providers:
            self._providers[provider] = _ProviderState()
        return self._providers[provider]

    def record_success(self, provider: str) -> None:
        with self._lock:
            state = self._get_state(provider)
            state.failures = 0
            state.state = "closed"

    def record_failure(self, provider: str) -> None:
        with self._lock:
            state = self._get_state(provider)
            state.failures += 1
            state.last_failure_time = time.time()
            if state.failures >= self.FAILURE_THRESHOLD:
                state.state = "open"

    def is_open(self, provider: str) -> bool:
        with self._lock:
            state = self._get_state(provider)
            if state.state == "closed":
                return False
            if state.state == "open":
                elapsed = time.time() - state.last_failure_time
                if elapsed >= self.RECOVERY_TIMEOUT:
                    state.state = "half_open"
                    return False  # allow one attempt
                return True
            # half_open — allow attempt
            return False

    def get_state(self, provider: str) -> str:
        with self._lock:
            return self._get_state(provider).state

    def reset(self) -> None:
        with self._lock:
            self._providers.clear()


_circuit_breaker = CircuitBreaker()


# ── Transient error detection ───────────────────────────────

_TRANSIENT_ERRORS = (
    ConnectionError,
    TimeoutError,
)


def _is_transient(exc: BaseException) -> bool:
    """Check if an exception is transient (worth retrying)."""
    if isinstance(exc, _TRANSIENT_ERRORS):
        return True
    msg = str(exc).lower()
    transient_patterns = [
        "rate limit",
        "429",
        "503",
        "502",
        "overloaded",
        "temporarily unavailable",
        "timeout",
        "connection",
    ]
    return any(p in msg for p in transient_patterns)


class TransientLLMError(Exception):
    """Wrapper for transient LLM errors that should be retried."""
    pass


# ── Main entry point ────────────────────────────────────────

PROVIDER_ALIASES = {"claude": "anthropic"}


@dataclass
class LLMSettings:
    provider: str = "openai"
    model: str = "Qwen/Qwen2.5-7B-Instruct"
    api_key: str = ""
    base_url: str = ""
    max_tokens: int = 4096
    timeout: float = 120.0
    max_attempts: int = 1

    def __post_init__(self):
        self.provider = PROVIDER_ALIASES.get(self.provider, self.provider)

    @classmethod
    def from_app(cls) -> "LLMSettings":
        cfg = current_app.config
        return cls(
            provider=cfg.get("LLM_PROVIDER", "openai"),
            model=cfg.get("LLM_MODEL", "Qwen/Qwen2.5-7B-Instruct"),
            api_key=cfg.get("LLM_API_KEY", ""),
            base_url=cfg.get("LLM_BASE_URL", ""),
            max_tokens=int(cfg.get("LLM_MAX_TOKENS", 4096)),
            timeout=float(cfg.get("LLM_TIMEOUT_SECONDS", 120)),
            max_attempts=max(1, int(cfg.get("LLM_MAX_ATTEMPTS", 1))),
        )


def _do_call(settings: LLMSettings, prompt: str, system: str, messages: list[dict] | None) -> str:
    """Execute the actual LLM API call (no retry)."""
    if settings.provider == "openai":
        from openai import OpenAI
        client = OpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url or None,
            timeout=settings.timeout,
        )
        oai_messages: list[dict] = []
        if system:
            oai_messages.append({"role": "system", "content": system})
        if messages:
            oai_messages.extend(messages)
        else:
            oai_messages.append({"role": "user", "content": prompt})
        response = client.chat.completions.create(
            model=settings.model,
            messages=oai_messages,
            max_tokens=settings.max_tokens,
        )
        if not response.choices:
            raise ValueError("model returned no choices")
        return response.choices[0].message.content or ""

    elif settings.provider == "anthropic":
        import anthropic
        client = anthropic.Anthropic(api_key=settings.api_key, timeout=settings.timeout)
        # Anthropic takes the system prompt separately from the turns.
        msgs = [m for m in (messages or []) if m["role"] != "system"]
        system_parts = [m["content"] for m in (messages or []) if m["role"] == "system"]
        if system:
            system_parts.insert(0, system)
        if not msgs:
            msgs = [{"role": "user", "content": prompt}]
        kwargs: dict = {"model": settings.model, "max_tokens": settings.max_tokens, "messages": msgs}
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)
        response = client.messages.create(**kwargs)
        return response.content[0].text

    else:
        raise ValueError(f"Unknown provider: {settings.provider}")


def _call_once(settings: LLMSettings, prompt: str, system: str, messages: list[dict] | None) -> str:
    try:
        return _do_call(settings, prompt, system, messages)
    except Exception as exc:
        if _is_transient(exc):
            raise TransientLLMError(str(exc)) from exc
        raise


def resilient_llm_call(
    settings: LLMSettings,
    prompt: str,
    system: str = "",
    messages: list[dict] | None = None,
) -> tuple[str, dict]:
    """Main entry point for resilient LLM calls.

    Args:
        settings: provider, model, credentials and limits
        prompt: The prompt text (ignored when messages are given)
        system: System prompt (optional)
        messages: Chat messages for multi-turn (optional)

    Returns:
        (response_text, metadata_dict) where metadata includes latency,
        provider and model.
    """
    if _circuit_breaker.is_open(settings.provider):
        raise RuntimeError(f"Circuit breaker open for provider: {settings.provider}")

    retrying = Retrying(
        retry=retry_if_exception_type(TransientLLMError),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        stop=stop_after_attempt(settings.max_attempts),
        reraise=True,
    )

    start = time.time()
    try:
        response_text = retrying(_call_once, settings, prompt, system, messages)
    except Exception:
        _circuit_breaker.record_failure(settings.provider)
        raise

    latency_ms = int((time.time() - start) * 1000)
    _circuit_breaker.record_success(settings.provider)

    metrics = {
        "provider": settings.provider,
        "model": settings.model,
        "latency_ms": latency_ms,
        "input_chars": len(system) + len(prompt) + sum(len(m.get("content", "")) for m in messages or []),
        "output_chars": len(response_text),
    }
    return response_text, metrics


def complete(prompt: str = "", messages: list[dict] | None = None, system: str = "") -> str:
    """Call the configured model; any failure surfaces as UpstreamFailure."""
    settings = LLMSettings.from_app()
    try:
        text, metrics = resilient_llm_call(settings, prompt, system=system, messages=messages)
    except Exception as exc:
        logger.warning("LLM call failed (%s/%s): %s", settings.provider, settings.model, exc)
        raise UpstreamFailure("language model call failed") from exc
    logger.info("LLM call ok provider=%s model=%s latency_ms=%d out_chars=%d",
                metrics["provider"], metrics["model"], metrics["latency_ms"], metrics["output_chars"])
    return text


def get_circuit_breaker() -> CircuitBreaker:
    """Access the module-level circuit breaker singleton."""
    return _circuit_breaker
