"""
CLI entry point for the batch learning pass over exported learning records.

Usage:
    python -m studio_agent.learning.run_learning --records learning_records.json --verbose
    python -m studio_agent.learning.run_learning --records learning_records.json --intent faq --report report.txt
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from studio_agent.learning.patterns import LearningAnalyzer
from studio_agent.schemas.conversation_schema import ConversationLearningRecord
from studio_agent.tools.store import InMemoryStore

logger = logging.getLogger(__name__)


def load_records(path: Path) -> list[ConversationLearningRecord]:
    """Load a JSON array of learning records, skipping invalid entries."""
    raw = json.loads(path.read_text(encoding="utf-8"))
    records = []
    for i, item in enumerate(raw):
        try:
            records.append(ConversationLearningRecord.model_validate(item))
        except ValidationError as exc:
            logger.warning("Skipping invalid record #%d: %s", i, exc.errors()[0]["msg"])
    return records


async def run(records: list[ConversationLearningRecord], intent: Optional[str], days: int) -> str:
    store = InMemoryStore()
    for record in records:
        await store.add_learning_record(record)
    analyzer = LearningAnalyzer(store)
    analysis = await analyzer.analyze_patterns(intent)
    insights = await analyzer.learning_insights(days)
    kb = await analyzer.auto_improve_knowledge_base()
    report = analyzer.format_report(analysis, insights, kb)
    for entry in await store.list_knowledge():
        report += f"\n  + {entry.question}"
    return report


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Mine recorded conversations for patterns and knowledge-base entries."
    )
    parser.add_argument(
        "--records",
        type=str,
        required=True,
        help="Path to a JSON file containing an array of learning records.",
    )
    parser.add_argument(
        "--intent",
        type=str,
        default=None,
        help="Restrict pattern analysis to one intent (default: all).",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=30,
        help="Insight window in days (default: 30).",
    )
    parser.add_argument(
        "--report",
        type=str,
        default=None,
        help="Path to write the learning report (default: stdout).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging output.",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        )
    else:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s: %(message)s",
        )

    records_path = Path(args.records)
    if not records_path.exists():
        logger.error("Records file not found: %s", records_path)
        sys.exit(1)

    records = load_records(records_path)
    if not records:
        logger.error("No valid learning records found in %s", records_path)
        sys.exit(1)

    logger.info("Loaded %d learning record(s) from %s", len(records), records_path)

    output = asyncio.run(run(records, args.intent, args.days))

    if args.report:
        report_path = Path(args.report)
        report_path.write_text(output, encoding="utf-8")
        logger.info("Report written to %s", report_path)
    else:
        sys.stdout.write(output + "\n")


if __name__ == "__main__":
    main()
