"""Document Memory.

Per-document registry of speaker names and places seen so far.  Names
gain weight each time they are resolved as ``character`` (2 for a
colon-terminated name, 1 otherwise), and a known name boosts the
character score of later lines.  The registry lives for one document
session; nothing here is persisted.
"""

from __future__ import annotations

import logging
from collections import Counter

from ..vocabulary import normalize_line, split_on_dash, split_place_parts, strip_name

log = logging.getLogger(__name__)

_WEIGHTS = {"high": 2, "medium": 1, "low": 0}
_MIN_LENGTH = 2


class DocumentMemory:
    def __init__(self) -> None:
        self._characters: Counter[str] = Counter()
        self._places: Counter[str] = Counter()

    def add_character(self, name: str, confidence: str = "medium") -> None:
        key = strip_name(name)
        if len(key) < _MIN_LENGTH:
            return
        if confidence not in _WEIGHTS:
            raise ValueError(f"unknown confidence tier: {confidence!r}")
        # a "low" addition registers the name with weight 0
        self._characters[key] += _WEIGHTS[confidence]
        log.debug("Memory: character %r weight=%d", key, self._characters[key])

    def is_known_character(self, name: str) -> str | None:
        """Return ``"high"``, ``"medium"`` or ``"low"`` for a registered name.

        ``"low"`` means registered without confirmation (weight 0).
        """
        key = strip_name(name)
        if key not in self._characters:
            return None
        weight = self._characters[key]
        if weight >= 3:
            return "high"
        if weight >= 1:
            return "medium"
        return "low"

    def character_weight(self, name: str) -> int:
        return self._characters.get(strip_name(name), 0)

    def all_characters(self) -> list[str]:
        return [name for name, _ in self._characters.most_common()]

    def add_place(self, place: str) -> None:
        """Register *place* and each of its dash-separated parts."""
        key = normalize_line(place)
        for name in dict.fromkeys([key, *split_place_parts(key)]):
            if len(name) >= _MIN_LENGTH:
                self._places[name] += 1

    def is_known_place(self, place: str) -> bool:
        """True when the whole line or the part before its first dash is known."""
        key = normalize_line(place)
        head, _ = split_on_dash(key)
        return key in self._places or head in self._places

    def all_places(self) -> list[str]:
        return [place for place, _ in self._places.most_common()]

    def clear(self) -> None:
        self._characters.clear()
        self._places.clear()
        log.info("Memory cleared")

    def snapshot(self) -> dict:
        return {
            "characters": dict(self._characters),
            "places": dict(self._places),
        }
