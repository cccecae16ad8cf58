"""Shared Arabic screenplay vocabulary and line predicates.

Every pattern and word list here is compiled or loaded once at import and
never mutated afterwards; the pipeline nodes only read them.
"""

from __future__ import annotations

import re
from pathlib import Path

_DATA_DIR = Path(__file__).resolve().parent / "data"


def _load_wordlist(name: str) -> tuple[str, ...]:
    """Read a one-word-per-line list, skipping blanks and ``#`` comments.

    Order is preserved so regex alternations built from it are stable.
    """
    words: list[str] = []
    for line in (_DATA_DIR / name).read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#") and line not in words:
            words.append(line)
    return tuple(words)


ACTION_VERBS = _load_wordlist("action_verbs.txt")
PLACE_NOUNS = _load_wordlist("places.txt")
PARENTHETICAL_WORDS = frozenset(_load_wordlist("parenthetical_words.txt"))

# Manner words that turn a dash-led line in a dialogue block into a direction.
DASH_DIRECTION_WORDS = frozenset([
    "همساً", "بصوت", "مبتسماً", "باحتقار", "بحزن", "بغضب", "بفرح",
    "بنظرة", "ساخراً", "متعجباً", "بحدة", "بهدوء",
])
DESCRIPTIVE_WORDS = frozenset(["بطيء", "سريع", "فجأة", "ببطء", "بسرعة", "هدوء", "صمت"])

# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

_INVISIBLE = re.compile(r"[\u200E\u200F\u061C\uFEFF\t]")
_TASHKEEL = re.compile(r"[\u064B-\u065F\u0670]")
_SPACES = re.compile(r"\s+")
_LEADING_BULLETS = re.compile(r"^[•·∙⋅●○◦■□▪▫◆◇]+\s*")
_TRAILING_COLON = re.compile(r"[:：\s]+$")


def normalize_line(text: str) -> str:
    """Drop direction marks, tabs and diacritics, then collapse whitespace."""
    text = _INVISIBLE.sub("", text or "")
    text = _TASHKEEL.sub("", text)
    return _SPACES.sub(" ", text).strip()


def normalize_for_analysis(text: str) -> str:
    return _LEADING_BULLETS.sub("", normalize_line(text))


def strip_name(text: str) -> str:
    """Remove a trailing colon (and the spaces around it) from a speaker name."""
    return _TRAILING_COLON.sub("", normalize_line(text))


def is_blank(text: str | None) -> bool:
    return not text or not text.strip()


def word_count(text: str) -> int:
    return len(text.split())


_SENTENCE_PUNCT = re.compile(r"[.!؟?]")
_SENTENCE_END = re.compile(r"(?:[.!؟?]|\.\.\.|…)\s*$")


def has_sentence_punctuation(text: str) -> bool:
    return bool(_SENTENCE_PUNCT.search(text))


def ends_with_sentence_punctuation(text: str) -> bool:
    return bool(_SENTENCE_END.search(text))


def ends_with_colon(text: str) -> bool:
    return text.rstrip().endswith((":", "："))


def has_colon(text: str) -> bool:
    return ":" in text or "：" in text


# ---------------------------------------------------------------------------
# Closed-form shapes
# ---------------------------------------------------------------------------

INVOCATION_RE = re.compile(
    r"^[{}\[\]()\uFD3E\uFD3F]*\s*بسم\s+الله\s+الرحمن\s+الرحيم\s*[{}\[\]()\uFD3E\uFD3F]*$",
    re.IGNORECASE,
)

_SCENE_WORD = r"(?:مشهد|م\.|scene)"
SCENE_PREFIX_RE = re.compile(
    rf"^\s*{_SCENE_WORD}\s*([0-9٠-٩]+)\s*(?:[-–—:،]\s*)?(.*)$",
    re.IGNORECASE,
)
SCENE_NUMBER_ONLY_RE = re.compile(rf"^\s*{_SCENE_WORD}\s*[0-9٠-٩]+\s*$", re.IGNORECASE)

_INOUT = r"(?:داخلي|خارجي|د\.|خ\.)"
_TIME = r"(?:ليل|نهار|ل\.|ن\.|صباح|مساء|فجر|ظهر|عصر|مغرب|عشاء|الغروب|الفجر)"
_SEP = r"\s*[-/&]\s*"
_TIME_LOCATION = rf"(?:{_INOUT}{_SEP}{_TIME}|{_TIME}{_SEP}{_INOUT}|{_INOUT}|{_TIME})"

TIME_LOCATION_RE = re.compile(_TIME_LOCATION)
TIME_LOCATION_ONLY_RE = re.compile(
    rf"^\s*(?:{_INOUT}{_SEP}{_TIME}|{_TIME}{_SEP}{_INOUT})\s*$"
)
INOUT_ONLY_RE = re.compile(rf"^\s*{_INOUT}\s*$")
TIME_ONLY_RE = re.compile(rf"^\s*{_TIME}\s*$")
INOUT_START_RE = re.compile(rf"^\s*{_INOUT}")
TIME_WORD_RE = re.compile(_TIME)
PHOTOMONTAGE_RE = re.compile(r"^\s*[()]*\s*(?:فوتو\s*مونتاج|photomontage)\s*[()]*", re.IGNORECASE)

TRANSITION_RE = re.compile(
    r"^\s*(?:قطع|قطع\s+إلى|انتقال\s+إلى|إلى|مزج|ذوبان|خارج\s+المشهد|اختفاء\s+تدريجي"
    r"|cut\s+to|fade\s+in|fade\s+out|fade\s+to\s+black|dissolve\s+to|iris\s+(?:in|out)"
    r"|wipe\s+to|jump\s+cut\s+to|smash\s+cut\s+to)\s*[:：]?\s*$",
    re.IGNORECASE,
)

PARENTHETICAL_SHAPE_RE = re.compile(r"^\s*\(.*\)\s*$")

INLINE_DIALOGUE_RE = re.compile(
    r"^[\u200E\u200F\u061C\uFEFF\s]*(?:[•●\-*+☒☐]\s*)?([^:：]{1,60}?)\s*[:：]\s*(.+)$"
)

_DASH_START = re.compile(r"^\s*[-–—−‒―]")
_DASH_SPLIT = re.compile(r"\s+[-–—]\s*|\s*[-–—]\s+")
_ARABIC = r"\u0600-\u06FF\u0750-\u077F\uFB50-\uFDFF\uFE70-\uFEFF"
_ARABIC_ONLY = re.compile(rf"^[\s{_ARABIC}:：]+$")
_CHARACTER_SHAPE = re.compile(rf"^[{_ARABIC}A-Za-z\s]+$")

# Movement verbs that, after a dash, mark the rest of the line as action.
VERB_RE = re.compile(
    r"(يدخل|يخرج|يقف|يجلس|ينظر|يتحرك|يقترب|يبتعد|يركض|يمشي|يتحدث|يصرخ)"
)

_PLACE_ALTERNATION = "|".join(PLACE_NOUNS)
KNOWN_PLACES_RE = re.compile(rf"(?:^|\b)(?:ال)?(?:{_PLACE_ALTERNATION})(?:\b|$)")
LOCATION_PREFIX_RE = re.compile(r"^(?:داخل|في|أمام|خلف|بجوار|على|تحت|فوق|عند)\s+")


def is_invocation(text: str) -> bool:
    return bool(INVOCATION_RE.match(normalize_line(text)))


def is_heading_number_only(text: str) -> bool:
    return bool(SCENE_NUMBER_ONLY_RE.match(normalize_line(text)))


def is_heading_start(text: str) -> bool:
    """A numbered scene marker, with or without inline detail."""
    return bool(SCENE_PREFIX_RE.match(normalize_line(text)))


def is_transition(text: str) -> bool:
    return bool(TRANSITION_RE.match(normalize_line(text)))


def is_parenthetical_shape(text: str) -> bool:
    return bool(PARENTHETICAL_SHAPE_RE.match(normalize_line(text)))


def starts_with_dash(text: str) -> bool:
    return bool(_DASH_START.match(text or ""))


def is_action_verb_start(text: str) -> bool:
    text = normalize_for_analysis(text)
    return any(text.startswith(verb) for verb in ACTION_VERBS)


def looks_like_action(text: str) -> bool:
    return is_action_verb_start(text) or starts_with_dash(text)


def is_arabic_only(text: str) -> bool:
    return bool(_ARABIC_ONLY.match(text))


def is_character_shape(text: str) -> bool:
    """Short run of letters and spaces, as a speaker name would be."""
    name = strip_name(text)
    return 1 <= len(name) <= 20 and bool(_CHARACTER_SHAPE.match(name))


def is_likely_action(text: str | None) -> bool:
    if is_blank(text):
        return False
    text = normalize_line(text)
    if len(text) <= 20 and ends_with_colon(text):
        return False
    return len(text) > 10


def is_place_like(text: str) -> bool:
    text = normalize_for_analysis(text)
    return bool(KNOWN_PLACES_RE.search(text) or LOCATION_PREFIX_RE.match(text))


def split_on_dash(text: str) -> tuple[str, str | None]:
    """Split at the first free-standing dash; ``(text, None)`` when absent."""
    parts = _DASH_SPLIT.split(text, maxsplit=1)
    if len(parts) == 1:
        return text, None
    return parts[0].strip(), parts[1].strip()


def split_place_parts(text: str) -> list[str]:
    """Every free-standing-dash segment of a place ("فيلا الشمري - الصالة")."""
    return [part.strip() for part in _DASH_SPLIT.split(text) if part.strip()]


def text_after_dash(text: str) -> str | None:
    """Text following the first dash anywhere in the line, if any."""
    m = re.search(r"[-–—](.*)$", text)
    return m.group(1).strip() if m else None


def parse_inline_dialogue(text: str) -> tuple[str, str] | None:
    """Return ``(name, speech)`` for a ``Name: speech`` line."""
    m = INLINE_DIALOGUE_RE.match(text or "")
    if not m:
        return None
    name = normalize_line(m.group(1))
    speech = normalize_line(m.group(2))
    if not name or not speech or word_count(name) > 7:
        return None
    if has_sentence_punctuation(name) or is_action_verb_start(name):
        return None
    if any(ch.isdigit() for ch in name) or is_transition(name):
        return None
    return name, speech
