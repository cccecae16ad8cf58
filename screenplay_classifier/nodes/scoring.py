"""Scoring Engine.

Closed-form lines (invocation, numbered heading, transition vocabulary,
parenthetical shape) are recognised outright.  Every other line gets an
independent 0-100 score for each contested type (character, dialogue,
action, parenthetical) from local shape and the resolved context.
"""

from __future__ import annotations

import logging

from ..models import (
    ACTION,
    CHARACTER,
    DIALOGUE,
    HEADING_FULL,
    HEADING_NUMBER_ONLY,
    HEADING_TYPES,
    INVOCATION,
    PARENTHETICAL,
    TRANSITION,
    ClassificationScore,
    DialogueBlockInfo,
    LineContext,
)
from ..vocabulary import (
    DASH_DIRECTION_WORDS,
    DESCRIPTIVE_WORDS,
    INOUT_START_RE,
    PARENTHETICAL_WORDS,
    TIME_WORD_RE,
    ends_with_colon,
    ends_with_sentence_punctuation,
    has_colon,
    is_action_verb_start,
    is_arabic_only,
    is_character_shape,
    is_heading_number_only,
    is_heading_start,
    is_invocation,
    is_likely_action,
    is_parenthetical_shape,
    is_place_like,
    is_transition,
    looks_like_action,
    normalize_for_analysis,
    starts_with_dash,
    text_after_dash,
    word_count,
)
from .adaptive_weights import AdaptiveWeightLearner
from .document_memory import DocumentMemory

log = logging.getLogger(__name__)

_KNOWN_SPEAKER_BONUS = {"high": 60, "medium": 40, "low": 20}
_KNOWN_SPEAKER_ACTION_PENALTY = {"high": -50, "medium": -30}


def quick_classify(text: str) -> tuple[str, str] | None:
    """Return ``(type, reason)`` when the line matches a closed-form shape."""
    if is_invocation(text):
        return INVOCATION, "invocation formula"
    if is_heading_number_only(text):
        return HEADING_NUMBER_ONLY, "numbered scene marker"
    if is_heading_start(text):
        return HEADING_FULL, "numbered scene marker with detail"
    if is_transition(text):
        return TRANSITION, "transition vocabulary"
    if is_parenthetical_shape(text):
        return PARENTHETICAL, "wrapped in parentheses"
    return None


def _next_is_speech(ctx: LineContext) -> bool:
    """Whether the next non-blank line has the size of a spoken line."""
    nxt = ctx.next_line
    if nxt is None or is_heading_start(nxt) or is_transition(nxt):
        return False
    return 1 < ctx.next_word_count <= 30


def score_character(
    text: str, ctx: LineContext, memory: DocumentMemory | None = None,
) -> ClassificationScore:
    line = normalize_for_analysis(text)
    score = 0
    reasons: list[str] = []

    known = memory.is_known_character(line) if memory else None
    if known:
        score += _KNOWN_SPEAKER_BONUS[known]
        reasons.append(f"known speaker ({known})")

    if looks_like_action(line):
        score += -15 if known else -45
        reasons.append("looks like action")

    if ends_with_colon(line):
        score += 50
        reasons.append("ends with colon")
    elif has_colon(line):
        score += 25
        reasons.append("contains colon")

    if ctx.current_word_count <= 3:
        score += 20
        reasons.append("very short")
    elif ctx.current_word_count <= 5:
        score += 10
        reasons.append("short")

    if not ctx.has_punctuation:
        score += 15
        reasons.append("no sentence punctuation")
    if ends_with_sentence_punctuation(line) and not has_colon(line):
        score -= 35
        reasons.append("ends like a sentence")

    if _next_is_speech(ctx):
        score += 25
        reasons.append("next line looks like speech")

    if is_action_verb_start(line):
        score -= 20
        reasons.append("opens with action verb")

    if is_arabic_only(line):
        score += 10
    if ctx.previous_lines and ctx.previous_type != CHARACTER:
        score += 5
    if line.startswith("صوت") and not has_colon(line):
        score -= 10
        reasons.append("voice cue without colon")

    return ClassificationScore(score, reasons)


def score_dialogue(
    text: str, ctx: LineContext, block: DialogueBlockInfo,
) -> ClassificationScore:
    line = normalize_for_analysis(text)
    prev = ctx.previous_type
    score = 0
    reasons: list[str] = []

    if prev == CHARACTER:
        score += 40
        reasons.append("follows speaker name")

    if starts_with_dash(line):
        if block.in_block:
            score += 35
            reasons.append("dash inside dialogue block")
            if block.distance_from_character <= 3:
                score += 15
        else:
            score -= 15
            reasons.append("dash outside dialogue block")

    if block.in_block:
        if line.startswith(("...", "…")):
            score += 25
            reasons.append("trailing-off opener")
        if line[:1] in ('"', "«"):
            score += 20
            reasons.append("opens with quote")

    if prev not in (CHARACTER, PARENTHETICAL, DIALOGUE):
        score -= 60
        reasons.append("no dialogue context")
        if looks_like_action(line):
            score -= 20

    if prev == CHARACTER:
        score += 60
    elif prev == PARENTHETICAL:
        score += 50
        reasons.append("follows parenthetical")
    elif prev == DIALOGUE:
        score += 35
        reasons.append("continues dialogue")

    if ctx.has_punctuation:
        score += 15
        reasons.append("sentence punctuation")

    words = ctx.current_word_count
    if 2 <= words <= 50:
        score += 15
    elif 1 <= words <= 60:
        score += 8

    if is_action_verb_start(line):
        score -= 25
        reasons.append("opens with action verb")
    if is_heading_start(line):
        score -= 20

    if ctx.next_line is not None and not is_character_shape(ctx.next_line):
        score += 10

    if not has_colon(line):
        score += 10
    elif line.count(":") + line.count("：") > 1:
        score -= 10

    if words == 1 and prev not in (CHARACTER, PARENTHETICAL):
        score -= 5

    return ClassificationScore(score, reasons)


def score_action(
    text: str,
    ctx: LineContext,
    block: DialogueBlockInfo,
    memory: DocumentMemory | None = None,
) -> ClassificationScore:
    line = normalize_for_analysis(text)
    prev = ctx.previous_type
    score = 0
    reasons: list[str] = []

    known = memory.is_known_character(line) if memory else None
    if known in _KNOWN_SPEAKER_ACTION_PENALTY:
        score += _KNOWN_SPEAKER_ACTION_PENALTY[known]
        reasons.append(f"known speaker ({known})")

    if is_action_verb_start(line):
        score += 20 if ctx.current_word_count == 1 else 50
        reasons.append("opens with action verb")

    dashed = starts_with_dash(line)
    if dashed:
        score += 40
        reasons.append("dash-led line")

    if prev in HEADING_TYPES:
        score += 30
        reasons.append("follows scene heading")
    if is_likely_action(ctx.next_line):
        score += 10

    if dashed:
        if block.in_block:
            score -= 20
            reasons.append("dash inside dialogue block")
        else:
            score += 25
            after = text_after_dash(line)
            if after and is_action_verb_start(after):
                score += 30
                reasons.append("dash followed by action verb")

    if ctx.current_word_count > 5:
        score += 10
    if prev == ACTION:
        score += 10
        reasons.append("continues action")
    if is_character_shape(line):
        score -= 20
    if not ends_with_colon(line):
        score += 5
    if any(word in line for word in DESCRIPTIVE_WORDS):
        score += 5

    return ClassificationScore(score, reasons)


def score_parenthetical(
    text: str, ctx: LineContext, block: DialogueBlockInfo,
) -> ClassificationScore:
    line = normalize_for_analysis(text)
    prev = ctx.previous_type
    score = 0
    reasons: list[str] = []

    if is_parenthetical_shape(line):
        score += 60
        reasons.append("wrapped in parentheses")
    else:
        score -= 70

    if prev == CHARACTER:
        score += 40
        reasons.append("follows speaker name")
    elif prev == DIALOGUE:
        score += 30
        reasons.append("inside dialogue")

    words = ctx.current_word_count
    if 1 <= words <= 5:
        score += 15
    elif words <= 10:
        score += 8

    if not is_action_verb_start(line):
        score += 10

    if starts_with_dash(line) and block.in_block:
        rest = line.lstrip("-–—−‒― ").strip()
        if len(rest) < 30 and any(word in rest for word in DASH_DIRECTION_WORDS):
            score += 40
            reasons.append("dash-led manner cue")

    if any(word in line for word in PARENTHETICAL_WORDS):
        score += 10
    if not ctx.has_punctuation:
        score += 5

    return ClassificationScore(score, reasons)


def score_heading(
    text: str,
    previous_type: str | None = None,
    memory: DocumentMemory | None = None,
) -> ClassificationScore:
    """Local match score of a line as part of a scene heading."""
    line = normalize_for_analysis(text)
    score = 0
    reasons: list[str] = []

    if is_heading_start(line):
        score += 50
        reasons.append("numbered scene marker")
    if is_place_like(line) or (memory is not None and memory.is_known_place(line)):
        score += 40
        reasons.append("place vocabulary")
    if INOUT_START_RE.match(line):
        score += 30
        reasons.append("interior/exterior")
    if TIME_WORD_RE.search(line):
        score += 20
        reasons.append("time of day")
    if word_count(line) <= 6:
        score += 10
    if not ends_with_sentence_punctuation(line):
        score += 10
    if is_action_verb_start(line):
        score -= 40
        reasons.append("opens with action verb")
    if previous_type in HEADING_TYPES or previous_type in (None, TRANSITION):
        score += 10

    return ClassificationScore(score, reasons)


def score_candidates(
    text: str,
    ctx: LineContext,
    block: DialogueBlockInfo,
    memory: DocumentMemory | None = None,
    learner: AdaptiveWeightLearner | None = None,
) -> dict[str, ClassificationScore]:
    """Score all contested types, then apply the cross-type corrections
    and the learned per-context weights."""
    line = normalize_for_analysis(text)
    prev = ctx.previous_type

    scores = {
        CHARACTER: score_character(text, ctx, memory),
        DIALOGUE: score_dialogue(text, ctx, block),
        ACTION: score_action(text, ctx, block, memory),
        PARENTHETICAL: score_parenthetical(text, ctx, block),
    }

    if is_action_verb_start(line):
        scores[ACTION].adjust(30, "action verb boost")
    if prev == CHARACTER and looks_like_action(line):
        scores[DIALOGUE].adjust(-55, "action shape right after speaker")
        scores[ACTION].adjust(25, "action shape right after speaker")
    if len(line) > 50 and ctx.has_punctuation:
        scores[ACTION].adjust(20, "long punctuated line")

    if learner is not None:
        for kind, score in scores.items():
            score.scale(learner.weight(prev, kind))

    return scores
