"""
Benchmark Test Cases

A benchmark case is a fixed prompt plus the criteria its output is held
to. The default suite covers text generation, analysis, embeddings and
multi-turn chat.
"""

from dataclasses import dataclass, field
from enum import Enum


class CaseCategory(str, Enum):
    TEXT_GENERATION = "text_generation"
    CHAT_COMPLETION = "chat_completion"
    EMBEDDING = "embedding"
    ANALYSIS = "analysis"


@dataclass(frozen=True)
class BenchmarkCriteria:
    """
    Checks applied to a case's output.

    Attributes:
        min_length: Shorter outputs lose 20 points
        max_length: Longer outputs lose 10 points
        must_contain: Each missing phrase costs 15 points
        must_not_contain: Each present phrase costs 25 points
        relevance_keywords: Finding fewer than half costs 20 points
        coherence_threshold: Coherence below it costs 15 points
    """

    min_length: int | None = None
    max_length: int | None = None
    must_contain: tuple[str, ...] = ()
    must_not_contain: tuple[str, ...] = ()
    relevance_keywords: tuple[str, ...] = ()
    coherence_threshold: float | None = None


@dataclass(frozen=True)
class BenchmarkCase:
    id: str
    name: str
    description: str
    category: CaseCategory
    prompt: str
    expected_output: str  # text | structured | embedding
    expected_latency_ms: float
    criteria: BenchmarkCriteria = field(default_factory=BenchmarkCriteria)


@dataclass
class BenchmarkSuite:
    id: str
    name: str
    description: str
    cases: list[BenchmarkCase]
    models: list[str]


DEFAULT_CASES: list[BenchmarkCase] = [
    BenchmarkCase(
        id="okr_generation_basic",
        name="Basic OKR Generation",
        description="Write a complete OKR for a technology company",
        category=CaseCategory.TEXT_GENERATION,
        prompt=(
            "Write a complete OKR for a technology company that wants to improve "
            "its productivity in Q4. Include 1 objective and 3 measurable key results."
        ),
        expected_output="structured",
        expected_latency_ms=5000,
        criteria=BenchmarkCriteria(
            min_length=200,
            max_length=800,
            must_contain=("objective", "key result", "Q4"),
            must_not_contain=("lorem ipsum", "placeholder"),
            relevance_keywords=("productivity", "technology", "measurable", "quarter"),
        ),
    ),
    BenchmarkCase(
        id="business_analysis",
        name="Business Performance Analysis",
        description="Analyse performance data and provide insights",
        category=CaseCategory.ANALYSIS,
        prompt=(
            "Analyze this performance data: Q3 sales: 500K, Q2: 450K, Q1: 400K. "
            "Employees: 50. Customer satisfaction: 85%. Provide 3 key insights and "
            "2 recommendations."
        ),
        expected_output="structured",
        expected_latency_ms=4000,
        criteria=BenchmarkCriteria(
            min_length=300,
            max_length=1000,
            must_contain=("insight", "recommendation", "analysis"),
            relevance_keywords=("growth", "trend", "optimization", "strategy"),
            coherence_threshold=80,
        ),
    ),
    BenchmarkCase(
        id="creative_suggestions",
        name="Creative Suggestions",
        description="Generate creative ideas for innovation",
        category=CaseCategory.TEXT_GENERATION,
        prompt=(
            "Generate 5 creative ideas to improve remote collaboration in software "
            "development teams."
        ),
        expected_output="text",
        expected_latency_ms=3000,
        criteria=BenchmarkCriteria(
            min_length=400,
            max_length=1200,
            must_contain=("collaboration", "remote", "development"),
            relevance_keywords=("innovation", "communication", "tool", "process"),
            coherence_threshold=75,
        ),
    ),
    BenchmarkCase(
        id="complex_reasoning",
        name="Complex Reasoning",
        description="Solve a problem that needs several reasoning steps",
        category=CaseCategory.ANALYSIS,
        prompt=(
            "A company has 3 departments. Sales: 10 employees, 120% productivity. "
            "Marketing: 8 employees, 95% productivity. Engineering: 15 employees, "
            "110% productivity. If they can hire 5 more people and want to maximize "
            "total output, how should they distribute them? Explain your reasoning "
            "step by step."
        ),
        expected_output="structured",
        expected_latency_ms=6000,
        criteria=BenchmarkCriteria(
            min_length=300,
            max_length=1000,
            must_contain=("reasoning", "step", "distribut"),
            relevance_keywords=("optimization", "calculation", "strategy", "productivity"),
        ),
    ),
    BenchmarkCase(
        id="embedding_similarity",
        name="Embedding Similarity",
        description="Embed a business concept",
        category=CaseCategory.EMBEDDING,
        prompt="strategic business objective",
        expected_output="embedding",
        expected_latency_ms=2000,
        criteria=BenchmarkCriteria(relevance_keywords=("embedding", "vector")),
    ),
    BenchmarkCase(
        id="conversation_context",
        name="Conversation Context",
        description="Keep context across a multi-turn conversation",
        category=CaseCategory.CHAT_COMPLETION,
        prompt=(
            "User: What are the benefits of OKRs? "
            "Assistant: OKRs offer several benefits... "
            "User: And what are the main challenges?"
        ),
        expected_output="text",
        expected_latency_ms=4000,
        criteria=BenchmarkCriteria(
            min_length=150,
            max_length=600,
            must_contain=("challenge", "OKR"),
            relevance_keywords=("implementation", "measurement", "alignment", "tracking"),
            coherence_threshold=85,
        ),
    ),
]

DEFAULT_SUITE = BenchmarkSuite(
    id="default_suite",
    name="Comprehensive Benchmark Suite",
    description="Evaluates models across generation, analysis, embedding and chat",
    cases=DEFAULT_CASES,
    models=[
        "openai/gpt-4o",
        "openai/gpt-4o-mini",
        "anthropic/claude-3-haiku",
        "anthropic/claude-3-sonnet",
    ],
)
