"""
Benchmark Runner Tests

Validates criteria scoring, conversation parsing, suite execution,
ranking and report persistence.

Test Categories:
1. TestParseConversation - Transcript to chat messages
2. TestScoreOutput - Criteria-based output scoring
3. TestSummaries - Ranking and stable tie-breaking
4. TestRunBenchmark - End-to-end runs over a fake invoker
5. TestLatestReport - Rebuilding the last run from the store
"""

import asyncio

import pytest

from aiops.benchmark import (
    DEFAULT_SUITE,
    BenchmarkResult,
    BenchmarkRunner,
    CaseCategory,
    parse_conversation,
    ranking_score,
    score_output,
    summarize,
)
from aiops.errors import NotFoundError
from aiops.storage import BENCHMARK_RESULTS

from fixtures import OKR_RESPONSE, FakeInvoker

MODELS = ["openai/gpt-4o", "openai/gpt-4o-mini"]
CASES = ["okr_generation_basic", "business_analysis", "conversation_context"]


def case(case_id):
    return next(c for c in DEFAULT_SUITE.cases if c.id == case_id)


def make_result(model, latency_ms=1000.0, quality=80.0, success=True, cost=0.001):
    return BenchmarkResult(
        run_id="run",
        test_case_id="okr_generation_basic",
        category="text_generation",
        model=model,
        provider=model.split("/")[0],
        success=success,
        latency_ms=latency_ms,
        cost=cost,
        quality_score=quality if success else 0.0,
        output_text="",
        input_tokens=100,
        output_tokens=100,
        expected_latency_ms=5000,
        timestamp=0.0,
    )


@pytest.fixture
def runner(invoker, recorder, store, clock):
    """Runner over the fake invoker."""
    return BenchmarkRunner(invoker, recorder, store, clock=clock)


class TestParseConversation:
    """Tests for parse_conversation()."""

    def test_transcript_becomes_messages(self):
        """Speaker markers split the transcript into roles."""
        messages = parse_conversation(case("conversation_context").prompt)

        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[0]["content"] == "What are the benefits of OKRs?"
        assert messages[2]["content"] == "And what are the main challenges?"

    def test_plain_prompt_is_single_user_message(self):
        """Text without markers is one user message."""
        assert parse_conversation("Summarize Q3") == [
            {"role": "user", "content": "Summarize Q3"}
        ]


class TestScoreOutput:
    """Tests for score_output()."""

    def test_good_output_scores_full(self):
        """An output meeting every criterion scores 100."""
        target = case("okr_generation_basic")

        assert score_output(OKR_RESPONSE, target.criteria, target.category) == 100

    def test_missing_phrases_and_length(self):
        """Short output missing required phrases loses points."""
        target = case("okr_generation_basic")
        output = "Objective: be better in Q4. " * 3

        # too short -20, missing "key result" -15, relevance 0/4 -20
        assert score_output(output, target.criteria, target.category) == 45

    def test_score_is_clamped(self):
        """Scores never go below zero."""
        target = case("okr_generation_basic")

        assert score_output("lorem ipsum placeholder", target.criteria, target.category) == 0

    def test_too_long(self):
        """Output beyond the maximum length loses 10 points."""
        target = case("okr_generation_basic")
        output = OKR_RESPONSE + " More detail." * 60

        assert score_output(output, target.criteria, target.category) == 90

    def test_embedding_structural_check(self):
        """Embeddings score 90 when a vector was produced."""
        criteria = case("embedding_similarity").criteria

        assert score_output("embedding_vector_1536_dimensions", criteria, CaseCategory.EMBEDDING) == 90
        assert score_output("no vector", criteria, CaseCategory.EMBEDDING) == 0


class TestSummaries:
    """Tests for summarize() and ranking_score()."""

    def test_faster_cheaper_ranks_first(self):
        """Latency and cost per token drive the ranking."""
        results = [
            make_result("openai/gpt-4o", latency_ms=6000, cost=0.01),
            make_result("openai/gpt-4o-mini", latency_ms=900, cost=0.0002),
        ]

        summaries = summarize(results, MODELS)

        assert [s.model for s in summaries] == ["openai/gpt-4o-mini", "openai/gpt-4o"]
        assert [s.rank for s in summaries] == [1, 2]

    def test_ties_keep_requested_order(self):
        """Equal scores keep the order models were requested in."""
        results = [make_result("openai/gpt-4o"), make_result("openai/gpt-4o-mini")]

        forward = summarize(results, MODELS)
        backward = summarize(results, list(reversed(MODELS)))

        assert [s.model for s in forward] == MODELS
        assert [s.model for s in backward] == list(reversed(MODELS))

    def test_models_without_results_are_skipped(self):
        """Only models that produced results are summarized."""
        summaries = summarize([make_result("openai/gpt-4o")], MODELS)

        assert [s.model for s in summaries] == ["openai/gpt-4o"]

    def test_failures_excluded_from_latency(self):
        """Failed results do not count toward latency or quality."""
        results = [
            make_result("openai/gpt-4o", latency_ms=1000, quality=90),
            make_result("openai/gpt-4o", latency_ms=30000, success=False),
        ]

        [summary] = summarize(results, ["openai/gpt-4o"])

        assert summary.success_rate == 50
        assert summary.average_latency == 1000
        assert summary.average_quality == 90
        assert "Reliability problems" in summary.weaknesses

    def test_ranking_formula(self):
        """The ranking blends success, quality, latency and cost."""
        [summary] = summarize([make_result("openai/gpt-4o", cost=0.0)], ["openai/gpt-4o"])

        # 100 * 0.3 + 80 * 0.25 + (100 - 10) * 0.2 + 100 * 0.25
        assert ranking_score(summary) == pytest.approx(93)


class TestRunBenchmark:
    """Tests for BenchmarkRunner.run_benchmark()."""

    @pytest.mark.asyncio
    async def test_two_models_three_cases(self, runner):
        """Each model gets one summary covering every case."""
        report = await runner.run_benchmark(models=MODELS, case_ids=CASES)

        assert len(report.results) == 6
        assert len(report.summaries) == 2
        assert all(s.total_tests == 3 for s in report.summaries)
        assert [s.rank for s in report.summaries] == [1, 2]
        assert report.summaries[0].model == "openai/gpt-4o-mini"
        assert report.suite_id == DEFAULT_SUITE.id

    @pytest.mark.asyncio
    async def test_parallel_run(self, runner):
        """Parallel runs produce the same pairs."""
        report = await runner.run_benchmark(models=MODELS, case_ids=CASES, parallel=True)

        pairs = {(r.model, r.test_case_id) for r in report.results}
        assert pairs == {(m, c) for m in MODELS for c in CASES}

    @pytest.mark.asyncio
    async def test_invocations_recorded(self, runner, recorder):
        """Every pair is recorded under a benchmark operation."""
        await runner.run_benchmark(
            models=["openai/gpt-4o"], case_ids=["okr_generation_basic"], user_id="bench"
        )

        [record] = recorder.get_recent(1)
        assert record.operation == "benchmark_okr_generation_basic"
        assert record.user_id == "bench"
        assert record.quality_score == 100

    @pytest.mark.asyncio
    async def test_case_parameters(self, runner, invoker):
        """Chat cases send messages and analysis cases a low temperature."""
        await runner.run_benchmark(
            models=["openai/gpt-4o"],
            case_ids=["business_analysis", "conversation_context"],
        )

        params = {prompt: p for _, prompt, p in invoker.calls}
        assert params[case("business_analysis").prompt] == {"temperature": 0.3}
        messages = params[case("conversation_context").prompt]["messages"]
        assert len(messages) == 3

    @pytest.mark.asyncio
    async def test_failing_model_ranked_last(self, runner, invoker):
        """A model whose calls fail has zero success and ranks last."""
        invoker.failures["anthropic/claude-3-haiku"] = "Provider anthropic is not configured"

        report = await runner.run_benchmark(
            models=["anthropic/claude-3-haiku", "openai/gpt-4o"], case_ids=CASES
        )

        failing = report.summaries[-1]
        assert failing.model == "anthropic/claude-3-haiku"
        assert failing.success_rate == 0
        assert failing.recommended_use_case == "Not recommended for production use"
        assert all(r.quality_score == 0 for r in report.results if not r.success)

    @pytest.mark.asyncio
    async def test_raising_invoker_is_contained(self, runner, invoker):
        """Invoker exceptions become failed results."""
        invoker.raises["openai/gpt-4o"] = RuntimeError("connection reset")

        report = await runner.run_benchmark(
            models=["openai/gpt-4o"], case_ids=["okr_generation_basic"]
        )

        [result] = report.results
        assert result.success is False
        assert result.error == "connection reset"

    @pytest.mark.asyncio
    async def test_timeout(self, recorder, store, clock):
        """Slow calls time out as failures."""

        class SlowInvoker(FakeInvoker):
            async def invoke(self, model_id, prompt, params=None):
                await asyncio.sleep(1)
                return await super().invoke(model_id, prompt, params)

        runner = BenchmarkRunner(
            SlowInvoker(), recorder, store, clock=clock, timeout_seconds=0.01
        )

        report = await runner.run_benchmark(
            models=["openai/gpt-4o"], case_ids=["okr_generation_basic"]
        )

        assert report.results[0].error.startswith("timeout")
        assert report.results[0].latency_ms == pytest.approx(10)

    @pytest.mark.asyncio
    async def test_unknown_suite(self, runner):
        """Unknown suites raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await runner.run_benchmark(suite_id="missing")

    def test_default_suite_listed(self, runner):
        """The default suite is registered."""
        assert [s.id for s in runner.get_suites()] == ["default_suite"]
        assert len(runner.get_suite("default_suite").cases) == 6


class TestLatestReport:
    """Tests for latest_report()."""

    def test_none_before_any_run(self, runner):
        """No runs means no report."""
        assert runner.latest_report() is None

    @pytest.mark.asyncio
    async def test_latest_run_is_rebuilt(self, runner, store):
        """The last run is rebuilt from stored rows."""
        await runner.run_benchmark(models=["openai/gpt-4o"], case_ids=CASES)
        second = await runner.run_benchmark(models=MODELS, case_ids=["okr_generation_basic"])

        latest = runner.latest_report()

        assert store.count(BENCHMARK_RESULTS) == 5
        assert latest.run_id == second.run_id
        assert len(latest.results) == 2
        assert [s.model for s in latest.summaries] == [s.model for s in second.summaries]
