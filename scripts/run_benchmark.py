#!/usr/bin/env python3
"""
Benchmark Runner Script

Runs a benchmark suite against the configured providers and prints the
ranked model comparison.

This script:
1. Loads settings and builds the service container
2. Runs the selected suite (all or some cases) for the selected models
3. Prints the ranking with latency, quality and cost per model
4. Flushes the recorded invocations to the configured store

Usage:
    python scripts/run_benchmark.py                          # Default suite, suite models
    python scripts/run_benchmark.py --models openai/gpt-4o-mini groq/llama-3.1-8b
    python scripts/run_benchmark.py --cases okr_generation_basic business_analysis
    python scripts/run_benchmark.py --parallel --verbose     # Concurrent, show each result
    python scripts/run_benchmark.py --list                   # List suites and cases only
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from aiops.benchmark import BenchmarkReport
from aiops.config import configure_logging, get_settings
from aiops.errors import NotFoundError
from aiops.services import AIOpsServices


def print_suites(services: AIOpsServices) -> None:
    for suite in services.benchmarks.get_suites():
        print(f"\n{suite.id}: {suite.name}")
        print(f"  {suite.description}")
        print(f"  Models: {', '.join(suite.models)}")
        for case in suite.cases:
            print(f"  - {case.id:<24} {case.category.value:<16} {case.name}")


def print_report(report: BenchmarkReport, verbose: bool = False) -> None:
    """Print a formatted ranking of a benchmark run."""

    print("\n" + "=" * 78)
    print(f"BENCHMARK RESULTS ({report.suite_id}, run {report.run_id})")
    print("=" * 78)

    print(f"\nExecuted {len(report.results)} case runs in {report.execution_time_ms / 1000:.2f}s")

    print(
        f"\n  {'#':>2} {'Model':<30} {'Score':>6} {'Success':>8} "
        f"{'Avg ms':>8} {'Quality':>8} {'Cost $':>10}"
    )
    print(f"  {'-'*2} {'-'*30} {'-'*6} {'-'*8} {'-'*8} {'-'*8} {'-'*10}")
    for summary in report.summaries:
        print(
            f"  {summary.rank:>2} {summary.model:<30} {summary.overall_score:>6.1f} "
            f"{summary.success_rate:>7.1f}% {summary.average_latency:>8.0f} "
            f"{summary.average_quality:>8.1f} {summary.total_cost:>10.6f}"
        )

    print("\nRecommendations:")
    for summary in report.summaries:
        print(f"  {summary.model:<30} {summary.recommended_use_case}")
        if summary.strengths:
            print(f"    + {', '.join(summary.strengths)}")
        if summary.weaknesses:
            print(f"    - {', '.join(summary.weaknesses)}")

    failures = [r for r in report.results if not r.success]
    if verbose:
        print("\nCase Results:")
        for r in report.results:
            status = "OK" if r.success else "FAILED"
            print(
                f"  {status:6s} | {r.model:<30} | {r.test_case_id:<24} | "
                f"{r.latency_ms:>7.0f}ms | quality {r.quality_score:>5.1f}"
            )
    elif failures:
        print(f"\nFailures ({len(failures)}):")
        for r in failures[:10]:
            print(f"  {r.model} / {r.test_case_id}: {r.error}")
        if len(failures) > 10:
            print(f"\n  ... and {len(failures) - 10} more failures")

    print("\n" + "=" * 78)


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings)
    services = AIOpsServices.build(settings)

    if args.list:
        print_suites(services)
        return 0

    try:
        report = await services.benchmarks.run_benchmark(
            suite_id=args.suite,
            models=args.models,
            case_ids=args.cases,
            parallel=args.parallel,
            user_id="benchmark-cli",
        )
    except NotFoundError as e:
        print(f"ERROR: {e}")
        return 1
    finally:
        flushed = services.recorder.flush_all()
        print(f"\nFlushed {flushed} metric records")

    print_report(report, verbose=args.verbose)
    return 0


def main():
    """Main entry point for the benchmark runner."""

    parser = argparse.ArgumentParser(
        description="Run a model benchmark suite and print the ranking",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_benchmark.py                              Default suite
  python scripts/run_benchmark.py --models openai/gpt-4o-mini  One model
  python scripts/run_benchmark.py --parallel                   Run pairs concurrently
  python scripts/run_benchmark.py --list                       List suites
        """,
    )

    parser.add_argument(
        "--suite",
        default="default_suite",
        help="Suite id (default: default_suite)",
    )
    parser.add_argument(
        "--models",
        nargs="+",
        help="Models to benchmark, in tie-break order (default: suite models)",
    )
    parser.add_argument(
        "--cases",
        nargs="+",
        help="Case ids to run (default: every case in the suite)",
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Run every model/case pair concurrently",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show each case result",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List suites and cases without running",
    )

    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
