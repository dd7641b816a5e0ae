"""
Constrained generation with bounded retries.

Models do not reliably follow formatting instructions on the first try, so the
loop re-asks (with a stricter reminder) until the target field satisfies the
bullet grammar. States:

    ATTEMPTING(n) -> VALIDATED            grammar satisfied
    ATTEMPTING(n) -> ATTEMPTING(n + 1)    grammar failed, attempts and time remain
    ATTEMPTING(n) -> EXHAUSTED_FALLBACK   out of attempts/time, some attempt parsed as an object
    ATTEMPTING(n) -> FAILED               out of attempts/time, nothing parsed

Attempts are strictly sequential because each retry prompt depends on the
previous failure.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from flowinvest.exceptions import FlowInvestError, UpstreamError, ValidationExhausted
from flowinvest.services.bullets import BulletGrammar, sort_by_sentiment
from flowinvest.services.extraction import extract_json
from flowinvest.services.llm_client import LLMClient, Message
from flowinvest.services.prompts import bullet_system_prompt, correction_note

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    ATTEMPTING = "attempting"
    VALIDATED = "validated"
    EXHAUSTED_FALLBACK = "exhausted_fallback"
    FAILED = "failed"


TERMINAL_STATES = frozenset({LoopState.VALIDATED, LoopState.EXHAUSTED_FALLBACK, LoopState.FAILED})
NON_RETRYABLE = frozenset({"invalid_key", "model_not_found"})


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    max_words: int = 10
    call_timeout: float | None = 60.0
    deadline: float | None = 180.0
    temperature: float = 0.7
    max_tokens: int = 1500

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_attempts=settings.BULLET_MAX_ATTEMPTS,
            max_words=settings.BULLET_MAX_WORDS,
            call_timeout=settings.LLM_TIMEOUT_SECONDS,
            deadline=settings.LLM_DEADLINE_SECONDS,
        )


@dataclass
class LoopOutcome:
    state: LoopState = LoopState.ATTEMPTING
    attempt: int = 1
    structured: dict[str, Any] | None = None
    last_error: Exception | None = None
    history: list[LoopState] = field(default_factory=list)

    @property
    def validated(self) -> bool:
        return self.state is LoopState.VALIDATED

    def transition(self, state: LoopState) -> None:
        self.history.append(self.state)
        self.state = state


class ConstrainedRetryLoop:
    """Re-issue a prompt until ``target_field`` of the JSON reply matches the bullet grammar."""

    def __init__(
        self,
        client: LLMClient,
        policy: RetryPolicy | None = None,
        *,
        target_field: str = "analysis",
        clock: Callable[[], float] = time.monotonic,
    ):
        if policy and policy.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.client = client
        self.policy = policy or RetryPolicy()
        self.grammar = BulletGrammar(max_words=self.policy.max_words)
        self.target_field = target_field
        self._clock = clock

    def _messages(self, prompt: str, attempt: int) -> list[Message]:
        user = prompt if attempt == 1 else f"{prompt}\n\n{correction_note(attempt, self.policy.max_words)}"
        return [
            {"role": "system", "content": bullet_system_prompt(self.policy.max_words)},
            {"role": "user", "content": user},
        ]

    async def _call(self, prompt: str, attempt: int) -> str:
        call = self.client.complete(
            self._messages(prompt, attempt),
            temperature=self.policy.temperature,
            max_tokens=self.policy.max_tokens,
            json_mode=True,
        )
        if self.policy.call_timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.policy.call_timeout)
        except asyncio.TimeoutError as exc:
            raise UpstreamError("timeout", details=f"No answer within {self.policy.call_timeout}s") from exc

    async def obtain(self, prompt: str) -> LoopOutcome:
        """
        Run the loop to a terminal state.

        Returns the outcome for VALIDATED and EXHAUSTED_FALLBACK; raises
        ``ValidationExhausted`` when no attempt produced a JSON object.
        """
        outcome = LoopOutcome()
        started = self._clock()

        while outcome.state not in TERMINAL_STATES:
            try:
                raw = await self._call(prompt, outcome.attempt)
                parsed = extract_json(raw)
            except FlowInvestError as exc:
                if isinstance(exc, UpstreamError) and exc.kind in NON_RETRYABLE:
                    raise
                logger.warning("Attempt %s/%s failed: %s", outcome.attempt, self.policy.max_attempts, exc)
                outcome.last_error = exc
                parsed = None

            if isinstance(parsed, dict):
                outcome.structured = parsed
                lines = self.grammar.validate(parsed.get(self.target_field))
                if lines is not None:
                    parsed[self.target_field] = sort_by_sentiment(lines)
                    logger.info("Bullet format validated on attempt %s", outcome.attempt)
                    outcome.transition(LoopState.VALIDATED)
                    break
                logger.info("Attempt %s returned an ungrammatical %r field", outcome.attempt, self.target_field)
            elif parsed is not None:
                logger.info("Attempt %s returned %s instead of an object", outcome.attempt, type(parsed).__name__)

            out_of_time = self.policy.deadline is not None and self._clock() - started >= self.policy.deadline
            if outcome.attempt >= self.policy.max_attempts or out_of_time:
                if out_of_time and outcome.attempt < self.policy.max_attempts:
                    logger.warning("Retry deadline of %ss reached after %s attempts", self.policy.deadline, outcome.attempt)
                final = LoopState.EXHAUSTED_FALLBACK if outcome.structured is not None else LoopState.FAILED
                outcome.transition(final)
            else:
                outcome.attempt += 1

        if outcome.state is LoopState.FAILED:
            raise ValidationExhausted(outcome.attempt, outcome.last_error)
        if outcome.state is LoopState.EXHAUSTED_FALLBACK:
            logger.warning("Falling back to last parsed object after %s attempts", outcome.attempt)
        return outcome
