"""Doubt & Resolution.

Picks the winning type from the candidate scores, measures how ambiguous
the pick was (0-100 doubt), and resolves close calls between two
candidates with context rules.  Order per line:

1. doubt from the score distribution, adjusted for a mid-line dash
2. structural override (a place name right after a heading)
3. smart fallback, only when the line needs review
"""

from __future__ import annotations

import logging
from collections import Counter

from ..models import (
    ACTION,
    BLANK,
    CHARACTER,
    DIALOGUE,
    HEADING_DETAIL,
    HEADING_TYPES,
    PARENTHETICAL,
    ClassificationResult,
    ClassificationScore,
    ClassifiedLine,
    FallbackRecord,
    LineContext,
    clamp,
    tier_for,
)
from ..vocabulary import (
    VERB_RE,
    ends_with_colon,
    is_heading_start,
    is_place_like,
    is_transition,
    normalize_for_analysis,
    strip_name,
    text_after_dash,
)
from .document_memory import DocumentMemory

log = logging.getLogger(__name__)

STRATEGY_GREEDY = "greedy"
RESOLUTION_STRATEGIES = frozenset([STRATEGY_GREEDY])

_FALLBACK_MAX_GAP = 25
_STRUCTURAL_OVERRIDE_SCORE = 85


def calculate_doubt(scores: dict[str, ClassificationScore]) -> float:
    values = sorted((s.score for s in scores.values()), reverse=True)
    if not values:
        return 0
    best = values[0]
    second = values[1] if len(values) > 1 else 0
    doubt = 0

    gap = best - second
    if gap < 15:
        doubt += 50
    elif gap < 25:
        doubt += 30
    elif gap < 35:
        doubt += 15

    if best < 40:
        doubt += 30
    elif best < 55:
        doubt += 15

    if sum(1 for v in values if best - v < 5) >= 3:
        doubt += 20

    tier = tier_for(best)
    if tier == "low":
        doubt += 20
    elif tier == "medium":
        doubt += 10

    return clamp(doubt)


def adjust_doubt_for_dash(text: str, doubt: float) -> float:
    """A dash followed by a movement verb signals action; otherwise a dash
    reads as a speech marker and lowers doubt."""
    after = text_after_dash(normalize_for_analysis(text))
    if after is None:
        return doubt
    if not after:
        return max(0, doubt - 10)
    if not VERB_RE.search(after):
        return max(0, doubt - 15)
    return min(100, doubt + 25)


def extract_top2(
    scores: dict[str, ClassificationScore],
) -> tuple[tuple[str, float], tuple[str, float]] | None:
    ranked = sorted(scores.items(), key=lambda kv: kv[1].score, reverse=True)
    if len(ranked) < 2:
        return None
    (t1, s1), (t2, s2) = ranked[0], ranked[1]
    return (t1, s1.score), (t2, s2.score)


def _next_looks_like_speech(ctx: LineContext) -> bool:
    nxt = ctx.next_line
    if nxt is None or is_heading_start(nxt) or is_transition(nxt):
        return False
    return 1 < ctx.next_word_count <= 30


def smart_fallback(
    top2: tuple[tuple[str, float], tuple[str, float]],
    text: str,
    ctx: LineContext,
    previous_type: str | None,
) -> tuple[str, str] | None:
    """Pick between the two best candidates of a close call.

    Returns ``(type, reason)`` or None when no rule applies.
    """
    (t1, s1), (t2, s2) = top2
    if s1 - s2 > _FALLBACK_MAX_GAP:
        return None

    pair = tuple(sorted((t1, t2)))
    if pair == (ACTION, CHARACTER):
        if _next_looks_like_speech(ctx):
            return CHARACTER, "next line looks like dialogue"
        return ACTION, "next line does not look like dialogue"

    if pair == (ACTION, DIALOGUE):
        if previous_type in (CHARACTER, PARENTHETICAL):
            return DIALOGUE, "follows speaker or direction"
        if previous_type == DIALOGUE:
            return DIALOGUE, "continues dialogue"
        return ACTION, "no dialogue context"

    if pair == (ACTION, PARENTHETICAL):
        if previous_type in (CHARACTER, DIALOGUE):
            return PARENTHETICAL, "inside dialogue block"
        return ACTION, "outside dialogue block"

    if pair == (CHARACTER, DIALOGUE):
        if previous_type == CHARACTER:
            return DIALOGUE, "follows speaker name"
        if ends_with_colon(text):
            return CHARACTER, "ends with colon"
    return None


def _structural_override(
    result: ClassificationResult,
    text: str,
    previous_type: str | None,
    memory: DocumentMemory | None,
) -> None:
    """A "character" right after a heading that names a place is heading detail."""
    if result.type != CHARACTER or previous_type not in HEADING_TYPES:
        return
    line = normalize_for_analysis(text)
    known = memory is not None and memory.is_known_place(strip_name(line))
    if not (is_place_like(line) or known):
        return
    result.scores[HEADING_DETAIL] = ClassificationScore(
        _STRUCTURAL_OVERRIDE_SCORE, ["place name after scene heading"],
    )
    result.type = HEADING_DETAIL
    log.debug("Structural override to heading-detail: %.60s", line)


def resolve(
    text: str,
    scores: dict[str, ClassificationScore],
    ctx: LineContext,
    memory: DocumentMemory | None = None,
) -> ClassificationResult:
    doubt = adjust_doubt_for_dash(text, calculate_doubt(scores))
    top2 = extract_top2(scores)

    best_type, best_score = ACTION, 0.0
    for kind, score in scores.items():
        if score.score > best_score:
            best_type, best_score = kind, score.score

    result = ClassificationResult(best_type, scores, doubt, top2)
    prev = ctx.previous_type
    _structural_override(result, text, prev, memory)

    if result.needs_review and top2:
        picked = smart_fallback(top2, text, ctx, prev)
        if picked and picked[0] != result.type:
            result.fallback = FallbackRecord(result.type, picked[0], picked[1])
            log.debug("Fallback %s -> %s (%s): %.60s",
                      result.type, picked[0], picked[1], text)
            result.type = picked[0]

    return result


def doubt_statistics(lines: list[ClassifiedLine]) -> dict:
    content = [ln for ln in lines if ln.type != BLANK]
    flagged = [ln for ln in content if ln.needs_review]
    pairs = Counter(
        "/".join(sorted((ln.top2[0][0], ln.top2[1][0])))
        for ln in flagged if ln.top2
    )
    return {
        "totalLines": len(content),
        "needsReview": len(flagged),
        "needsReviewPercentage": round(100 * len(flagged) / len(content), 1) if content else 0,
        "topAmbiguousPairs": [
            {"pair": pair, "count": count} for pair, count in pairs.most_common(5)
        ],
    }


def reviewable_lines(lines: list[ClassifiedLine]) -> list[dict]:
    out = []
    for ln in lines:
        if not ln.needs_review or ln.type == BLANK:
            continue
        entry = {
            "index": ln.index,
            "text": ln.text,
            "currentType": ln.type,
            "doubtScore": round(ln.doubt_score, 2),
        }
        if ln.top2:
            entry["suggestedTypes"] = [
                {"type": t, "score": round(s, 2)} for t, s in ln.top2
            ]
        if ln.fallback:
            entry["fallbackApplied"] = {
                "originalType": ln.fallback.original_type,
                "fallbackType": ln.fallback.fallback_type,
                "reason": ln.fallback.reason,
            }
        out.append(entry)
    return out
