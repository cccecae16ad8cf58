"""External Review.

Sends the lines the rule-based pass was least sure about to an external
model in batches, with a few lines of context around each.  The model
only returns type suggestions for lines it was asked about; a suggestion
is applied when it names a different valid type.

Failures degrade per batch: a batch that errors (network, timeout,
exhausted rate-limit retries, unreadable reply) contributes no
suggestions and the primary classification stands.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import re
import time
from pathlib import Path

from .. import config
from ..models import (
    BLANK,
    CHARACTER,
    DIALOGUE,
    HEADING_DETAIL,
    LINE_TYPES,
    PARENTHETICAL,
    ClassifiedLine,
    ReviewInfo,
    ReviewStats,
    ReviewSuggestion,
)
from ..timing import timed_node
from ..vocabulary import (
    VERB_RE,
    has_colon,
    is_action_verb_start,
    is_parenthetical_shape,
    is_place_like,
    normalize_for_analysis,
    starts_with_dash,
    word_count,
)
from .review_client import ResponseParseError, ReviewClient

log = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
_USER_TEMPLATE = (_PROMPTS_DIR / "review_user.txt").read_text(encoding="utf-8").strip()

_CONTEXT_WINDOW = 3
# Heading detail lines matching at least this strongly are not sent for review.
_HEADING_EXEMPT_SCORE = 70
_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


class ReviewCancelled(Exception):
    """The caller's cancel signal fired while a batch was in flight."""


def contextual_doubt(lines: list[ClassifiedLine], i: int) -> float:
    """Rule-based doubt from the line's neighbours, for lines that carry
    no score-derived doubt."""
    line = lines[i]
    doubt = 0

    if line.top2:
        gap = (line.top2[0][1] - line.top2[1][1]) / 100
        if gap < 0.15:
            doubt += 40
        elif gap < 0.25:
            doubt += 25

    prev = next((ln.type for ln in reversed(lines[:i]) if ln.type != BLANK), None)
    nxt = next((ln.type for ln in lines[i + 1:] if ln.type != BLANK), None)
    if prev == CHARACTER and nxt == DIALOGUE and line.type not in (PARENTHETICAL, DIALOGUE):
        doubt += 30

    if word_count(line.text) <= 2:
        doubt += 20

    return min(100, doubt)


def hybrid_doubt(lines: list[ClassifiedLine], i: int) -> float:
    """Doubt used when no score distribution is available.

    The rule-based figure is authoritative; no model opinion is blended in.
    """
    return contextual_doubt(lines, i)


def assign_rule_doubt(lines: list[ClassifiedLine], indices: list[int]) -> None:
    for i in indices:
        lines[i].doubt_score = hybrid_doubt(lines, i)


def select_for_review(
    lines: list[ClassifiedLine],
    threshold: float,
    review_all: bool = False,
) -> list[int]:
    selected = []
    for i, line in enumerate(lines):
        if line.type == BLANK:
            continue
        if (line.type == HEADING_DETAIL
                and (line.heading_score or 0) >= _HEADING_EXEMPT_SCORE
                and not VERB_RE.search(line.text)):
            continue
        if review_all or line.doubt_score >= threshold:
            selected.append(i)
    return selected


def _features(text: str) -> dict:
    line = normalize_for_analysis(text)
    return {
        "words": word_count(line),
        "dash": starts_with_dash(line) or " - " in line,
        "colon": has_colon(line),
        "parentheses": is_parenthetical_shape(line),
        "verbStart": is_action_verb_start(line),
        "placeWord": is_place_like(line),
    }


def build_prompt(lines: list[ClassifiedLine], batch: list[int]) -> str:
    queries = []
    for i in batch:
        before = lines[max(0, i - _CONTEXT_WINDOW):i]
        after = lines[i + 1:i + 1 + _CONTEXT_WINDOW]
        queries.append({
            "index": i,
            "text": lines[i].text,
            "currentType": lines[i].type,
            "features": _features(lines[i].text),
            "before": [{"text": ln.text[:200], "type": ln.type} for ln in before],
            "after": [{"text": ln.text[:200], "type": ln.type} for ln in after],
        })
    return _USER_TEMPLATE.format(queries=json.dumps(queries, ensure_ascii=False, indent=2))


def parse_review_response(content: str) -> list[ReviewSuggestion]:
    """Read the model's JSON array (bare or in a fenced block)."""
    m = _FENCED_JSON.search(content)
    raw = m.group(1) if m else content.strip()
    try:
        items = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"reply is not JSON: {raw[:200]!r}") from e
    if not isinstance(items, list):
        raise ResponseParseError(f"reply is {type(items).__name__}, not a list")

    suggestions = []
    for item in items:
        if not isinstance(item, dict):
            continue
        kind = item.get("suggestedType") or item.get("suggestion")
        index = item.get("index")
        if not isinstance(index, int) or not isinstance(kind, str):
            continue
        try:
            confidence = int(item.get("confidence", 50))
        except (TypeError, ValueError):
            confidence = 50
        suggestions.append(ReviewSuggestion(
            line_index=index,
            suggested_type=kind,
            confidence=confidence,
            reason=str(item.get("reason") or "no reason provided"),
        ))
    return suggestions


async def _unless_cancelled(coro, cancel_event: asyncio.Event | None):
    """Await *coro*, abandoning it if *cancel_event* fires first."""
    if cancel_event is None:
        return await coro
    request = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({request, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        request.cancel()
        raise
    finally:
        waiter.cancel()
    if request in done:
        return request.result()
    request.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await request
    raise ReviewCancelled()


@timed_node("external_review", "ai")
async def review_lines(
    lines: list[ClassifiedLine],
    client: ReviewClient | None = None,
    doubt_threshold: float | None = None,
    batch_size: int | None = None,
    review_all: bool = False,
    cancel_event: asyncio.Event | None = None,
) -> tuple[list[ClassifiedLine], ReviewStats]:
    """Review doubtful lines in place.

    When *cancel_event* is set, remaining batches are skipped and the
    in-flight request is abandoned; suggestions from batches that already
    completed stay applied.
    """
    client = client or ReviewClient()
    threshold = config.REVIEW_DOUBT_THRESHOLD if doubt_threshold is None else doubt_threshold
    size = batch_size or config.REVIEW_BATCH_SIZE
    stats = ReviewStats(total_lines=len(lines))
    t0 = time.monotonic_ns()

    targets = select_for_review(lines, threshold, review_all)
    if not targets:
        log.info("External review: nothing to review (threshold=%s)", threshold)
        return lines, stats
    log.info("External review: %d of %d line(s) above doubt %s", len(targets), len(lines), threshold)

    for start in range(0, len(targets), size):
        if cancel_event is not None and cancel_event.is_set():
            stats.cancelled = True
            break
        batch = targets[start:start + size]
        prompt = build_prompt(lines, batch)
        stats.api_calls += 1

        try:
            content = await _unless_cancelled(client.complete(prompt), cancel_event)
            suggestions = parse_review_response(content)
        except ReviewCancelled:
            stats.cancelled = True
            break
        except Exception:
            log.exception("External review batch at line %d failed", batch[0])
            suggestions = []

        stats.reviewed_lines += len(batch)
        stats.changed_lines += _apply(lines, set(batch), suggestions)

    if stats.cancelled:
        log.info("External review cancelled after %d line(s)", stats.reviewed_lines)
    stats.total_time_ms = (time.monotonic_ns() - t0) // 1_000_000
    log.info("External review: %d/%d reviewed line(s) changed in %d ms",
             stats.changed_lines, stats.reviewed_lines, stats.total_time_ms)
    return lines, stats


def _apply(
    lines: list[ClassifiedLine],
    asked: set[int],
    suggestions: list[ReviewSuggestion],
) -> int:
    changed: set[int] = set()
    for s in suggestions:
        if s.line_index not in asked or s.line_index in changed:
            continue
        if s.suggested_type not in LINE_TYPES:
            continue
        line = lines[s.line_index]
        if s.suggested_type == line.type:
            continue
        line.review = ReviewInfo(line.type, s.confidence, s.reason)
        log.debug("Review: line %d %s -> %s (%s)",
                  s.line_index, line.type, s.suggested_type, s.reason)
        line.type = s.suggested_type
        changed.add(s.line_index)
    return len(changed)
