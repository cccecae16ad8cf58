"""Context Builder.

Builds the neighbourhood of a line from the records already emitted
(with their resolved types) and the raw lines still ahead of it.
"""

from __future__ import annotations

from collections.abc import Iterable

from ..models import (
    BLANK,
    BLOCK_BREAKERS,
    CHARACTER,
    DIALOGUE,
    PARENTHETICAL,
    ContextLine,
    DialogueBlockInfo,
    LineContext,
)
from ..vocabulary import (
    has_sentence_punctuation,
    is_blank,
    normalize_for_analysis,
    word_count,
)

_WINDOW = 3


def build_context(
    text: str,
    history: list[ContextLine],
    upcoming: Iterable[str],
) -> LineContext:
    """*history* is every record emitted before this line, oldest first.
    *upcoming* yields the raw text of the lines after it, in order; it is
    only read as far as the window needs."""
    previous: list[ContextLine] = []
    for entry in reversed(history):
        if entry.type != BLANK:
            previous.insert(0, entry)
            if len(previous) == _WINDOW:
                break
    following: list[str] = []
    for ln in upcoming:
        if is_blank(ln):
            continue
        following.append(ln)
        if len(following) == _WINDOW:
            break
    next_line = following[0] if following else None

    current = normalize_for_analysis(text)
    ctx = LineContext(
        previous_lines=previous,
        next_lines=[ContextLine(ln, "unknown") for ln in following],
        next_line=next_line,
        current_length=len(current),
        current_word_count=word_count(current),
        has_punctuation=has_sentence_punctuation(current),
    )
    if next_line is not None:
        nxt = normalize_for_analysis(next_line)
        ctx.next_length = len(nxt)
        ctx.next_word_count = word_count(nxt)
        ctx.next_has_punctuation = has_sentence_punctuation(nxt)
    return ctx


def dialogue_block_info(history: list[ContextLine]) -> DialogueBlockInfo:
    """Scan back over resolved types to see whether we sit inside a
    character/dialogue block, and how far the speaker line is."""
    for back, entry in enumerate(reversed(history), start=1):
        kind = entry.type
        if kind == BLANK:
            continue
        if kind in BLOCK_BREAKERS:
            return DialogueBlockInfo(False)
        if kind == CHARACTER:
            return DialogueBlockInfo(True, back)
        if kind in (DIALOGUE, PARENTHETICAL):
            continue
        return DialogueBlockInfo(False)
    return DialogueBlockInfo(False)


def previous_non_blank_type(history: list[ContextLine]) -> str | None:
    for entry in reversed(history):
        if entry.type != BLANK:
            return entry.type
    return None
