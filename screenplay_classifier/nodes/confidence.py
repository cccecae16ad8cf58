"""Confidence Diagnostics.

Breaks the confidence in each resolved line into three factors:

- pattern: how strongly the line's own shape matched (its winning score)
- context: whether the type is a valid successor of the previous type
- history: how common the type has been in the document so far

and combines them into an overall 0-100 figure.
"""

from __future__ import annotations

import logging
from collections import Counter

from ..models import (
    BLANK,
    VALID_NEXT_TYPES,
    ClassifiedLine,
    ConfidenceDiagnostics,
)
from ..timing import timed_node

log = logging.getLogger(__name__)

_WEIGHTS = (0.40, 0.35, 0.25)  # pattern, context, history
_UNCERTAIN_BELOW = 60


def diagnose(
    line: ClassifiedLine,
    previous_type: str | None,
    type_counts: Counter[str],
) -> ConfidenceDiagnostics:
    pattern = round(line.score)

    if previous_type is None:
        context = 60
    elif line.type in VALID_NEXT_TYPES.get(previous_type, ()):
        context = 85
    else:
        context = 35

    seen = sum(type_counts.values())
    history = 50 if not seen else round(30 + 70 * type_counts[line.type] / seen)

    overall = round(pattern * _WEIGHTS[0] + context * _WEIGHTS[1] + history * _WEIGHTS[2])
    uncertain = overall < _UNCERTAIN_BELOW or line.needs_review

    weakest = min(("pattern", pattern), ("context", context), ("history", history),
                  key=lambda kv: kv[1])
    if previous_type is not None and context < 50:
        explanation = f"{line.type} rarely follows {previous_type}"
    elif uncertain:
        explanation = f"weakest factor: {weakest[0]} ({weakest[1]})"
    else:
        explanation = f"{line.type} well supported"

    return ConfidenceDiagnostics(
        overall=overall,
        context=context,
        pattern=pattern,
        history=history,
        alternatives=[
            {"type": kind, "score": round(score, 2)} for kind, score in line.alternatives[:3]
        ],
        is_uncertain=uncertain,
        explanation=explanation,
    )


@timed_node("confidence_diagnostics", "programmatic")
def attach_diagnostics(lines: list[ClassifiedLine]) -> list[ClassifiedLine]:
    """Annotate every non-blank line in place and return the same list."""
    counts: Counter[str] = Counter()
    previous: str | None = None
    uncertain = 0
    for line in lines:
        if line.type == BLANK:
            continue
        line.diagnostics = diagnose(line, previous, counts)
        uncertain += line.diagnostics.is_uncertain
        counts[line.type] += 1
        previous = line.type
    log.info("Confidence diagnostics: %d uncertain line(s)", uncertain)
    return lines
