"""Coverage validation.

Checks that the classified records still account for every input line,
in order, with well-formed fields.  Logs warnings for issues but does
NOT fail the request.
"""

from __future__ import annotations

import logging

from ..models import LINE_TYPES, ClassifiedLine
from ..timing import timed_node

log = logging.getLogger(__name__)


@timed_node("validation", "programmatic")
def validate_coverage(
    records: list[ClassifiedLine], line_count: int
) -> tuple[bool, list[str]]:
    """Returns ``(passed, issues)``; *issues* is empty when *passed*."""
    issues: list[str] = []

    covered = {r.line_index for r in records}
    missing = sorted(set(range(line_count)) - covered)
    if missing:
        issues.append(f"Lines without a record: {missing[:10]}")

    for prev, cur in zip(records, records[1:]):
        if cur.line_index < prev.line_index:
            issues.append(
                f"Out of order at record {cur.index}: line {cur.line_index} after {prev.line_index}"
            )
            break

    bad_types = sorted({r.type for r in records} - LINE_TYPES)
    if bad_types:
        issues.append(f"Unknown types: {bad_types}")

    out_of_range = [r.index for r in records if not 0 <= r.doubt_score <= 100]
    if out_of_range:
        issues.append(f"Doubt outside 0-100 at records {out_of_range[:10]}")

    for issue in issues:
        log.warning("Validation: %s", issue)
    return not issues, issues
