"""Line Classifier.

Walks the document top to bottom.  Scene headings go through the
Structural Parser first; closed-form lines and inline ``Name: speech``
lines are emitted directly; everything else is scored against the types
already resolved above it and resolved through the doubt rules.  Resolved
speaker names feed the Document Memory as the walk proceeds.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable

from ..models import (
    ACTION,
    BLANK,
    CHARACTER,
    DIALOGUE,
    ClassificationResult,
    ClassificationScore,
    ClassifiedLine,
    ContextLine,
    SceneHeaderParts,
)
from ..timing import timed_node
from ..vocabulary import (
    ends_with_colon,
    is_blank,
    normalize_line,
    parse_inline_dialogue,
    strip_name,
)
from .adaptive_weights import AdaptiveWeightLearner
from .context_builder import build_context, dialogue_block_info, previous_non_blank_type
from .document_memory import DocumentMemory
from .doubt_resolver import RESOLUTION_STRATEGIES, STRATEGY_GREEDY, resolve
from .scene_header_parser import cleanup, parse_scene_header
from .scoring import quick_classify, score_candidates, score_heading

log = logging.getLogger(__name__)


def classify_line(
    text: str,
    history: list[ContextLine],
    upcoming: Iterable[str] = (),
    memory: DocumentMemory | None = None,
    learner: AdaptiveWeightLearner | None = None,
) -> ClassificationResult:
    """Classify one line given what was resolved before it."""
    quick = quick_classify(text)
    if quick:
        kind, reason = quick
        return ClassificationResult(kind, {kind: ClassificationScore(100, [reason])})

    ctx = build_context(text, history, upcoming)
    block = dialogue_block_info(history)
    scores = score_candidates(text, ctx, block, memory, learner)
    result = resolve(text, scores, ctx, memory)

    if result.type == CHARACTER and memory is not None:
        memory.add_character(strip_name(text), "high" if ends_with_colon(text) else "medium")
    return result


@timed_node("line_classifier", "programmatic")
def classify_lines(
    lines: list[str],
    previous_types: list[str] | None = None,
    memory: DocumentMemory | None = None,
    learner: AdaptiveWeightLearner | None = None,
    strategy: str = STRATEGY_GREEDY,
) -> list[ClassifiedLine]:
    """Classify every line of a document.

    *previous_types* are types already resolved before the first line
    (for example the part of a script above an edit); they count as
    history for the first lines but produce no output.
    """
    if strategy not in RESOLUTION_STRATEGIES:
        raise ValueError(f"unknown resolution strategy: {strategy!r}")
    if memory is None:
        memory = DocumentMemory()

    history = [ContextLine("", kind) for kind in previous_types or []]
    out: list[ClassifiedLine] = []

    def emit(line_index: int, text: str, kind: str, **extra) -> ClassifiedLine:
        record = ClassifiedLine(index=len(out), line_index=line_index, text=text, type=kind, **extra)
        out.append(record)
        history.append(ContextLine(text, kind))
        return record

    i = 0
    while i < len(lines):
        raw = lines[i]
        if is_blank(raw):
            emit(i, "", BLANK)
            i += 1
            continue

        header = parse_scene_header(lines, i, memory)
        if header is not None:
            _emit_header(header, lines, i, history, memory, emit)
            i += header.consumed_line_count
            continue

        text = raw.strip()
        if quick_classify(text) is None:
            inline = parse_inline_dialogue(text)
            if inline is not None:
                name, speech = inline
                memory.add_character(name, "high")
                emit(i, name, CHARACTER)
                emit(i, speech, DIALOGUE)
                i += 1
                continue

        upcoming = (lines[j] for j in range(i + 1, len(lines)))
        result = classify_line(text, history, upcoming, memory, learner)
        emit(
            i, text, result.type,
            confidence=result.confidence,
            score=result.score,
            doubt_score=result.doubt_score,
            top2=result.top2,
            fallback=result.fallback,
            alternatives=sorted(
                ((k, s.score) for k, s in result.scores.items() if k != result.type),
                key=lambda kv: kv[1], reverse=True,
            ),
        )
        i += 1

    counts = Counter(r.type for r in out)
    log.info("Line classifier: %d lines -> %d records %s",
             len(lines), len(out), dict(counts))
    return out


def _emit_header(
    header: SceneHeaderParts,
    lines: list[str],
    start: int,
    history: list[ContextLine],
    memory: DocumentMemory,
    emit,
) -> None:
    if header.place:
        memory.add_place(header.place)

    for offset, role in enumerate(header.line_roles):
        text = lines[start + offset].strip()
        last = offset == header.consumed_line_count - 1
        remainder = header.remaining_action if last else None
        if remainder:
            norm = normalize_line(text)
            cut = norm.rfind(remainder)
            text = cleanup(norm[:cut]) if cut > 0 else norm

        prev = previous_non_blank_type(history)
        emit(
            start + offset, text, role,
            heading_score=score_heading(text, prev, memory).score,
        )
        if remainder:
            emit(start + offset, remainder, ACTION)
