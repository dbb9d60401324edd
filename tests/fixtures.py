"""
Test Fixtures

Shared test data and fakes for the AIOps test suite: a sample model
response, a manually advanced clock and an in-process model invoker.
"""

from aiops.dispatcher.handlers import InvocationResult
from aiops.registry.models import provider_for

START_TIME = 1_760_000_000.0

# Well-formed OKR answer; scores well on every heuristic dimension
OKR_RESPONSE = (
    "Objective: Improve engineering productivity across the technology "
    "organization in Q4.\n\n"
    "Key result 1: Reduce average build time from 20 to 8 minutes, measurable "
    "through CI metrics. Key result 2: Raise deployment frequency to daily for "
    "every team. Key result 3: Cut unplanned work to under 15 percent of sprint "
    "capacity. Furthermore, progress is reviewed every quarter with the "
    "management team."
)


class FakeClock:
    """Manually advanced time source shared by the components under test."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeInvoker:
    """
    In-process ModelInvoker.

    Every model answers with ``text`` unless overridden per model in
    ``responses``; models listed in ``failures`` return an error result,
    models in ``raises`` raise.
    """

    def __init__(
        self,
        text: str = OKR_RESPONSE,
        latency_ms: float = 800.0,
        input_tokens: int = 120,
        output_tokens: int = 380,
    ):
        self.text = text
        self.latency_ms = latency_ms
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.responses: dict[str, str] = {}
        self.latencies: dict[str, float] = {}
        self.failures: dict[str, str] = {}
        self.raises: dict[str, Exception] = {}
        self.calls: list[tuple[str, str, dict]] = []

    async def invoke(self, model_id, prompt, params=None):
        self.calls.append((model_id, prompt, dict(params or {})))
        if model_id in self.raises:
            raise self.raises[model_id]
        latency = self.latencies.get(model_id, self.latency_ms)
        if model_id in self.failures:
            return InvocationResult(
                text="",
                input_tokens=0,
                output_tokens=0,
                latency_ms=latency,
                model_used=model_id,
                provider=provider_for(model_id),
                error=self.failures[model_id],
            )
        return InvocationResult(
            text=self.responses.get(model_id, self.text),
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            latency_ms=latency,
            model_used=model_id,
            provider=provider_for(model_id),
        )
