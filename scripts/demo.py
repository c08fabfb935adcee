#!/usr/bin/env python3
"""
Demo script for evalgate.

This script demonstrates the full loop:
1. Handle simulated interactions through the escalation gate
2. Sample each traffic window from the event store
3. Run the built-in evaluators over every sample
4. Detect degradation in the final window
5. Write an HTML report

Usage:
    python scripts/demo.py [--windows N] [--sessions N] [--seed N]
"""

import argparse
import asyncio
import random
import sys
from datetime import timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from evalgate.api.dependencies import build_services
from evalgate.config import load_settings
from evalgate.db.database import close_db, init_db
from evalgate.evaluation.dataset import Dataset
from evalgate.models.common import utc_now
from evalgate.models.evaluation import DegradationPolicy
from evalgate.models.scoring import ExclusionRule, ScoredOutput
from evalgate.pipeline import InteractionPipeline
from evalgate.reporting.visualization import VisualizationGenerator

QUESTIONS = [
    ("Where is my order?", "shipping"),
    ("Can I get a refund for a damaged item?", "billing"),
    ("My chest hurts after the new medication", "medical"),
    ("How do I reset my password?", "account"),
    ("Is this product safe for children?", "safety"),
]


def simulated_model(rng: random.Random, degraded: bool):
    """Model-call stand-in whose confidence drops when degraded."""

    async def call(payload: dict) -> ScoredOutput:
        await asyncio.sleep(rng.uniform(0.001, 0.01))
        base = 0.55 if degraded else 0.85
        return ScoredOutput(
            output=f"Answer to: {payload['question']}",
            confidence=max(0.0, min(1.0, rng.gauss(base, 0.08))),
            subscores={"policy_violation": rng.choice([0.0, 0.0, 0.0, 0.0, 0.7])},
            category=payload["category"],
        )

    return call


def print_header(text: str):
    """Print formatted header."""
    print("\n" + "=" * 60)
    print(f"  {text}")
    print("=" * 60)


def print_section(text: str):
    """Print formatted section."""
    print(f"\n>>> {text}")
    print("-" * 40)


async def run_demo(windows: int = 6, sessions: int = 40, seed: int = 7, output_dir: Path = Path(".")):
    """Run the demo loop."""
    print_header("evalgate Demo")
    print(f"Time: {utc_now().isoformat()}")

    output_dir.mkdir(parents=True, exist_ok=True)
    settings = load_settings(
        database_url=f"sqlite+aiosqlite:///{output_dir / 'demo.db'}",
        category_overrides={"medical": 0.9},
        exclusion_rules=[
            ExclusionRule(name="policy", subscore="policy_violation", operator=">=", threshold=0.5),
        ],
    )
    session_factory = await init_db(settings.database_url)
    escalations = []
    services = build_services(settings, session_factory, review_sink=escalations.append)
    services.registry.freeze()

    rng = random.Random(seed)
    try:
        # Each window is sampled and evaluated on its own
        print_section("1. Handling traffic and evaluating each window")
        last_run = None
        for window in range(windows):
            degraded = window == windows - 1
            pipeline = InteractionPipeline(
                services.store,
                services.gate,
                simulated_model(rng, degraded),
                calls_per_minute=100_000,
            )

            start = utc_now()
            inputs = [
                {"question": q, "category": c}
                for q, c in (rng.choice(QUESTIONS) for _ in range(sessions))
            ]
            outcomes = await asyncio.gather(*(pipeline.handle(p, p["category"]) for p in inputs))
            end = utc_now() + timedelta(microseconds=1)

            sample = await services.store.sample_live(start, end, settings.live_sample_size, seed)
            dataset = Dataset.from_sessions(sample, start, end, seed)
            last_run = await services.runner.run(dataset, system_version=f"demo-{window}")

            escalated = sum(1 for o in outcomes if o.decision.escalate)
            print(f"✓ Window {window}: {len(outcomes)} sessions, {escalated} escalated"
                  f"{'  (degraded model)' if degraded else ''}")

        print(f"  Review queue size: {len(escalations)}")

        print_section("2. Degradation checks")
        policies = {
            "mean_confidence": DegradationPolicy(percentile=10, trailing_windows=5),
            "escalation_rate": DegradationPolicy(percentile=10, trailing_windows=5, higher_is_better=False),
        }
        degraded_metrics = set()
        for metric_name, policy in policies.items():
            alerts = await services.aggregator.check_alerts([metric_name], dataset.dataset_id, policy)
            for alert in alerts:
                degraded_metrics.add(metric_name)
                print(f"⚠️  {metric_name}: {alert.current_value:.3f} vs baseline {alert.baseline_value:.3f}")
        if not degraded_metrics:
            print("✓ No degradation detected")

        print_section("3. Generating Report")
        report = services.reports.build_report(last_run)
        print(services.reports.to_markdown(report))

        trends = {
            name: await services.aggregator.trend(name, dataset.dataset_id, windows)
            for name in policies
        }
        report_path = output_dir / "demo_report.html"
        report_path.write_text(
            VisualizationGenerator().generate_full_report(report, trends, degraded_metrics),
            encoding="utf-8",
        )
        print(f"✓ Report saved to: {report_path}")

        log_path = output_dir / "demo_events.jsonl"
        count = await services.store.export_jsonl(log_path)
        print(f"✓ Exported {count} events to: {log_path}")
    finally:
        await close_db()

    print_header("Demo Complete!")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="evalgate demo")
    parser.add_argument("--windows", type=int, default=6, help="Number of traffic windows")
    parser.add_argument("--sessions", type=int, default=40, help="Sessions per window")
    parser.add_argument("--seed", type=int, default=7, help="Simulation and sampling seed")
    parser.add_argument("--output", type=Path, default=Path("data/demo"), help="Output directory")
    args = parser.parse_args()

    asyncio.run(run_demo(windows=args.windows, sessions=args.sessions, seed=args.seed, output_dir=args.output))
