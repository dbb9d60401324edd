"""
Judge-model relevance scoring.

An optional capability: a cheap model rates how relevant a response is to
its prompt. Any failure (timeout, provider error, unparseable output)
returns None so the scorer falls back to the heuristic.
"""

import asyncio
import logging
import re
from typing import Protocol

from aiops.dispatcher.handlers import ModelInvoker
from aiops.quality.criteria import QualityProfile

logger = logging.getLogger(__name__)

_INTEGER = re.compile(r"-?\d+")

JUDGE_PROMPT = """Rate how relevant this response is to the user's request.

Request: "{prompt}"
Response: "{response}"

Operation: {operation}
{required}{domain}
Rate relevance from 0 to 100.
Reply with a single number between 0 and 100."""


class QualityJudge(Protocol):
    """Anything that can rate relevance, or decline by returning None."""

    async def score_relevance(
        self, prompt: str, response: str, profile: QualityProfile
    ) -> float | None: ...


def parse_score(text: str | None) -> float | None:
    """
    Extract a 0-100 score from judge output.

    Returns:
        The first integer found, clamped to [0, 100], or None
    """
    if not text:
        return None
    match = _INTEGER.search(text)
    if match is None:
        return None
    return float(max(0, min(100, int(match.group()))))


class ModelJudge:
    """
    Relevance judge backed by a model invocation.

    Example:
        judge = ModelJudge(invoker, model_id="openai/gpt-4o-mini")
        score = await judge.score_relevance(prompt, response, profile)
        if score is None:
            ...  # use the heuristic
    """

    def __init__(
        self,
        invoker: ModelInvoker,
        model_id: str = "openai/gpt-4o-mini",
        timeout_seconds: float = 10.0,
    ):
        self._invoker = invoker
        self._model_id = model_id
        self._timeout = timeout_seconds

    async def score_relevance(
        self, prompt: str, response: str, profile: QualityProfile
    ) -> float | None:
        evaluation_prompt = JUDGE_PROMPT.format(
            prompt=prompt,
            response=response,
            operation=profile.operation,
            required=(
                f"- Must include: {', '.join(profile.required_elements)}\n"
                if profile.required_elements
                else ""
            ),
            domain=(
                f"- Expected domain knowledge: {', '.join(profile.domain_terms)}\n"
                if profile.domain_terms
                else ""
            ),
        )
        try:
            result = await asyncio.wait_for(
                self._invoker.invoke(
                    self._model_id,
                    evaluation_prompt,
                    {"max_tokens": 10, "temperature": 0.1},
                ),
                self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Judge timed out after {self._timeout}s, using heuristic")
            return None
        except Exception as e:
            logger.warning(f"Judge call failed, using heuristic: {e}")
            return None

        if not result.success:
            logger.warning(f"Judge returned an error, using heuristic: {result.error}")
            return None

        score = parse_score(result.text)
        if score is None:
            logger.warning(f"Unparseable judge output {result.text!r}, using heuristic")
        return score
