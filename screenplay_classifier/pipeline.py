"""Pipeline orchestrator.

Runs line classification, coverage validation and confidence
diagnostics, then the optional rule audit and external review, and
collects per-node timing into a structured report.
"""

from __future__ import annotations

import asyncio
import logging
import re

from .models import ClassifiedLine, NodeMetrics, PipelineResult
from .nodes import confidence, external_review, line_classifier, validation
from .nodes.adaptive_weights import AdaptiveWeightLearner
from .nodes.document_memory import DocumentMemory
from .nodes.doubt_resolver import STRATEGY_GREEDY, doubt_statistics, reviewable_lines
from .nodes.review_client import ReviewClient
from .nodes.rule_auditor import RuleAuditor
from .timing import build_report, collect_metrics

log = logging.getLogger(__name__)

_LINE_BREAK = re.compile(r"\r?\n")


def split_lines(text: str) -> list[str]:
    return _LINE_BREAK.split(text) if text else []


def classify_document(
    text: str,
    previous_types: list[str] | None = None,
    memory: DocumentMemory | None = None,
    learner: AdaptiveWeightLearner | None = None,
    strategy: str = STRATEGY_GREEDY,
) -> list[ClassifiedLine]:
    """Classify *text* line by line; synchronous and deterministic.

    A fresh Document Memory is used unless one is passed in.
    """
    return line_classifier.classify_lines(
        split_lines(text), previous_types, memory, learner, strategy,
    )


async def run_pipeline(
    text: str,
    previous_types: list[str] | None = None,
    memory: DocumentMemory | None = None,
    learner: AdaptiveWeightLearner | None = None,
    auditor: RuleAuditor | None = None,
    review: bool = False,
    review_client: ReviewClient | None = None,
    doubt_threshold: float | None = None,
    cancel_event: asyncio.Event | None = None,
) -> PipelineResult:
    """Run the full pipeline and return records with a per-node report."""
    memory = memory if memory is not None else DocumentMemory()
    lines = split_lines(text)
    audit: list[dict] = []
    review_stats = None

    with collect_metrics() as metrics:
        records = line_classifier.classify_lines(lines, previous_types, memory, learner)
        _mark(metrics, "line_classifier", sum(1 for r in records if r.needs_review))

        passed, issues = validation.validate_coverage(records, len(lines))
        _mark(metrics, "validation", 0 if passed else len(issues))

        confidence.attach_diagnostics(records)
        _mark(metrics, "confidence_diagnostics",
              sum(1 for r in records if r.diagnostics and r.diagnostics.is_uncertain))

        if auditor is not None:
            suggestions = auditor.audit([
                {"text": r.text, "type": r.type, "confidence": r.score} for r in records
            ])
            audit = [s.to_dict() for s in suggestions]
            _mark(metrics, "rule_auditor", len({s.line_index for s in suggestions}),
                  processed=len(records))

        if review:
            records, stats = await external_review.review_lines(
                records, review_client, doubt_threshold, cancel_event=cancel_event,
            )
            review_stats = stats.to_dict()
            _mark(metrics, "external_review", stats.changed_lines,
                  processed=stats.reviewed_lines)

    report = build_report(metrics)
    statistics = doubt_statistics(records)
    statistics["reviewable"] = reviewable_lines(records)
    statistics["characters"] = memory.all_characters()

    log.info(
        "Pipeline complete: %d lines -> %d records, %d need review | "
        "total=%dms (programmatic=%dms, ai=%dms)",
        len(lines), len(records), statistics["needsReview"],
        report["total_duration_ms"],
        report["programmatic_duration_ms"],
        report["ai_duration_ms"],
    )

    return PipelineResult(
        lines=[r.to_dict() for r in records],
        audit=audit,
        review=review_stats,
        statistics=statistics,
        report=report,
    )


def _mark(
    metrics: list[NodeMetrics],
    node_name: str,
    affected: int,
    processed: int | None = None,
) -> None:
    """Fill in how many lines the latest run of *node_name* changed or flagged."""
    for m in reversed(metrics):
        if m.node_name == node_name:
            m.lines_affected = affected
            if processed is not None:
                m.lines_processed = processed
            return
