"""Structural Parser for scene headings.

A heading opens with a numbered marker ("مشهد 3", "م. 3", "Scene 3")
optionally followed by inline detail on the same line.  It may continue
over the following lines with an interior/exterior and time line
("داخلي - ليل") and a place line ("بيت أحمد - غرفة المكتب").  The parser
consumes those continuation lines greedily and stops at the first line
that cannot belong to a heading.

Each consumed line gets a role:
- the marker line: ``heading-full`` with inline detail, ``heading-number-only`` without
- interior/exterior and time lines: ``heading-place``
- place lines: ``heading-detail``
"""

from __future__ import annotations

import logging
import re

from ..models import (
    HEADING_DETAIL,
    HEADING_FULL,
    HEADING_NUMBER_ONLY,
    HEADING_PLACE,
    SceneHeaderParts,
)
from ..vocabulary import (
    INOUT_ONLY_RE,
    PHOTOMONTAGE_RE,
    SCENE_PREFIX_RE,
    TIME_LOCATION_ONLY_RE,
    TIME_LOCATION_RE,
    TIME_ONLY_RE,
    ends_with_sentence_punctuation,
    has_colon,
    has_sentence_punctuation,
    is_action_verb_start,
    is_blank,
    is_parenthetical_shape,
    is_place_like,
    is_transition,
    normalize_line,
    parse_inline_dialogue,
    split_on_dash,
    word_count,
)
from .document_memory import DocumentMemory

log = logging.getLogger(__name__)

_MAX_PLACE_WORDS = 6
_EDGE_JUNK = re.compile(r"^[\s\-–—:،,]+|[\s\-–—:،,]+$")


def cleanup(text: str) -> str:
    return _EDGE_JUNK.sub("", text).strip()


def parse_scene_header(
    lines: list[str],
    start: int,
    memory: DocumentMemory | None = None,
) -> SceneHeaderParts | None:
    """Try to read a scene heading beginning at ``lines[start]``.

    Returns None when the line is not a heading start.  On success at least
    one line is consumed.
    """
    first = normalize_line(lines[start])
    m = SCENE_PREFIX_RE.match(first)
    if not m:
        return None

    parts = SceneHeaderParts(scene_number=_scene_label(first, m.group(1)))
    rest = cleanup(m.group(2) or "")
    places: list[str] = []

    if rest:
        parts.line_roles.append(HEADING_FULL)
        if _read_inline_detail(rest, parts, places):
            parts.place = " - ".join(places)
            return parts
    else:
        parts.line_roles.append(HEADING_NUMBER_ONLY)

    for i in range(start + 1, len(lines)):
        raw = lines[i]
        if is_blank(raw):
            break
        line = normalize_line(raw)
        if _ends_heading(line, parts):
            break

        if is_parenthetical_shape(line):
            # only an open time detail may continue inside parentheses
            inner = cleanup(line.strip().strip("()"))
            if not _fill_time(inner, parts):
                break
            _consume(parts, HEADING_PLACE)
            continue

        if _fill_time(line, parts):
            _consume(parts, HEADING_PLACE)
            continue

        head, tail = split_on_dash(line)
        if tail and is_action_verb_start(tail) and _is_place_line(head, memory):
            places.append(cleanup(head))
            parts.remaining_action = tail
            _consume(parts, HEADING_DETAIL)
            break

        if not _is_place_line(line, memory):
            break
        if tail and _time_incomplete(parts) and TIME_ONLY_RE.match(tail):
            places.append(cleanup(head))
            _fill_time(tail, parts)
        else:
            places.append(cleanup(line))
        _consume(parts, HEADING_DETAIL)

    parts.place = " - ".join(p for p in places if p)
    log.debug("Scene header %s: time=%r place=%r consumed=%d",
              parts.scene_number, parts.time_detail, parts.place,
              parts.consumed_line_count)
    return parts


def _scene_label(line: str, number: str) -> str:
    prefix = line[: line.find(number)].strip()
    return f"{prefix} {number}"


def _read_inline_detail(rest: str, parts: SceneHeaderParts, places: list[str]) -> bool:
    """Parse the detail that shares the marker line.

    Returns True when the heading ends on this line (a dash followed by an
    action verb split the rest off as action).
    """
    montage = PHOTOMONTAGE_RE.match(rest)
    if montage:
        places.append(cleanup(montage.group(0)))
        rest = cleanup(rest[montage.end():])
        if not rest:
            return False

    if is_action_verb_start(rest):
        parts.remaining_action = rest
        parts.line_roles[0] = HEADING_NUMBER_ONLY
        return True

    if _fill_time(rest, parts):
        return False

    tl = TIME_LOCATION_RE.search(rest)
    if tl and tl.start() == 0:
        parts.time_detail = cleanup(tl.group(0))
        rest = cleanup(rest[tl.end():])
    if not rest:
        return False

    head, tail = split_on_dash(rest)
    if tail and is_action_verb_start(tail):
        if head:
            places.append(cleanup(head))
        parts.remaining_action = tail
        return True
    places.append(rest)
    return False


def _consume(parts: SceneHeaderParts, role: str) -> None:
    parts.consumed_line_count += 1
    parts.line_roles.append(role)


def _ends_heading(line: str, parts: SceneHeaderParts) -> bool:
    if SCENE_PREFIX_RE.match(line) or is_transition(line):
        return True
    if parse_inline_dialogue(line) is not None:
        return True
    if is_parenthetical_shape(line):
        return False
    return ends_with_sentence_punctuation(line)


def _time_incomplete(parts: SceneHeaderParts) -> bool:
    t = parts.time_detail
    return not t or bool(INOUT_ONLY_RE.match(t) or TIME_ONLY_RE.match(t))


def _fill_time(text: str, parts: SceneHeaderParts) -> bool:
    """Absorb *text* into the interior/exterior/time detail if it belongs there."""
    if not text or not _time_incomplete(parts):
        return False
    current = parts.time_detail
    if TIME_LOCATION_ONLY_RE.match(text):
        if current:
            return False
        parts.time_detail = text
        return True
    if not current and (INOUT_ONLY_RE.match(text) or TIME_ONLY_RE.match(text)):
        parts.time_detail = text
        return True
    if INOUT_ONLY_RE.match(current) and TIME_ONLY_RE.match(text):
        parts.time_detail = f"{current} - {text}"
        return True
    if TIME_ONLY_RE.match(current) and INOUT_ONLY_RE.match(text):
        parts.time_detail = f"{text} - {current}"
        return True
    return False


def _is_place_line(line: str, memory: DocumentMemory | None) -> bool:
    known = is_place_like(line) or (memory is not None and memory.is_known_place(line))
    if not known:
        return False
    if word_count(line) > _MAX_PLACE_WORDS:
        return False
    if has_sentence_punctuation(line) or has_colon(line):
        return False
    return not is_action_verb_start(line)
