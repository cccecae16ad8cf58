"""Rule-Based Auditor.

Reviews an already classified batch and proposes corrections without
applying them.  Two checks run per line:

1. knowledge base: a pattern that confirms one type and rejects others
2. sequence: the type must be a valid successor of the previous line's type

The knowledge base is editable at runtime and round-trips through JSON.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone

from ..models import (
    ACTION,
    CHARACTER,
    DIALOGUE,
    HEADING_FULL,
    HEADING_PLACE,
    INVOCATION,
    LINE_TYPES,
    PARENTHETICAL,
    TRANSITION,
    VALID_NEXT_TYPES,
    AuditSuggestion,
    KnowledgeBaseRule,
)
from ..timing import timed_node

log = logging.getLogger(__name__)

_SEVERITY_ORDER = {"high": 0, "medium": 1, "low": 2}
_SEQUENCE_CHECK_BELOW = 80

_FLAG_LETTERS = (("i", re.IGNORECASE), ("m", re.MULTILINE), ("s", re.DOTALL))
# JavaScript-only flags with no effect on a single-line match
_IGNORED_LETTERS = frozenset("guy")


def _flags_to_letters(flags: int) -> str:
    return "".join(letter for letter, bit in _FLAG_LETTERS if flags & bit)


def _letters_to_flags(letters: str) -> int:
    flags = 0
    for letter, bit in _FLAG_LETTERS:
        if letter in letters:
            flags |= bit
    unknown = set(letters) - {letter for letter, _ in _FLAG_LETTERS} - _IGNORED_LETTERS
    if unknown:
        raise ValueError(f"unsupported regex flags: {sorted(unknown)}")
    return flags


def _default_knowledge_base() -> list[tuple[re.Pattern, list[KnowledgeBaseRule]]]:
    return [
        (re.compile(r"^[{}\[\]()]*\s*بسم\s+الله\s+الرحمن\s+الرحيم\s*[{}\[\]()]*$"), [
            KnowledgeBaseRule(INVOCATION, (ACTION, DIALOGUE, CHARACTER, HEADING_FULL), 95,
                              "the opening invocation is never part of the script body"),
        ]),
        (re.compile(r"^\s*\(.*\)\s*$"), [
            KnowledgeBaseRule(PARENTHETICAL, (ACTION, DIALOGUE, CHARACTER), 90,
                              "a line wrapped in parentheses is a direction"),
        ]),
        (re.compile(r"^\s*(?:داخلي|خارجي)"), [
            KnowledgeBaseRule(HEADING_PLACE, (ACTION, DIALOGUE, CHARACTER), 80,
                              "interior/exterior opens a scene heading line"),
        ]),
        (re.compile(r"^\s*(?:قطع|قطع\s+إلى|انتقال\s+إلى|مزج|ذوبان|cut\s+to|fade\s+(?:in|out))\s*[:：]?\s*$",
                    re.IGNORECASE), [
            KnowledgeBaseRule(TRANSITION, (ACTION, CHARACTER, DIALOGUE), 85,
                              "transition vocabulary on its own line"),
        ]),
        (re.compile(r"^[\u0600-\u06FF\s]{2,30}[:：]\s*$"), [
            KnowledgeBaseRule(CHARACTER, (ACTION, DIALOGUE), 75,
                              "a short name ending with a colon introduces a speaker"),
        ]),
    ]


class RuleAuditor:
    def __init__(self) -> None:
        self._knowledge = _default_knowledge_base()

    # --- knowledge base ---------------------------------------------------

    def add_rule(self, pattern: str | re.Pattern, rules: list[KnowledgeBaseRule]) -> None:
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        for rule in rules:
            self._check_rule(rule)
        self._knowledge.append((compiled, list(rules)))

    def remove_rule(self, pattern: str | re.Pattern) -> bool:
        """Remove the first entry with this pattern source (and the same
        flags, when a compiled pattern is given)."""
        if isinstance(pattern, str):
            source, flags = pattern, None
        else:
            source, flags = pattern.pattern, pattern.flags
        for i, (compiled, _) in enumerate(self._knowledge):
            if compiled.pattern == source and flags in (None, compiled.flags):
                del self._knowledge[i]
                return True
        return False

    def rule_count(self) -> int:
        return len(self._knowledge)

    def reset(self) -> None:
        """Empty the knowledge base (the defaults are not restored)."""
        self._knowledge = []

    @staticmethod
    def _check_rule(rule: KnowledgeBaseRule) -> None:
        kinds = {rule.confirm_type, *rule.reject_types}
        if not kinds <= LINE_TYPES:
            raise ValueError(f"unknown line types in rule: {sorted(kinds - LINE_TYPES)}")
        if not 0 <= rule.min_confidence <= 100:
            raise ValueError(f"min_confidence out of range: {rule.min_confidence}")

    def export_knowledge_base(self) -> str:
        return json.dumps({
            "rules": [
                {
                    "pattern": compiled.pattern,
                    "flags": _flags_to_letters(compiled.flags),
                    "rules": [
                        {
                            "confirmType": r.confirm_type,
                            "rejectTypes": list(r.reject_types),
                            "minConfidence": r.min_confidence,
                            "explanation": r.explanation,
                        }
                        for r in rules
                    ],
                }
                for compiled, rules in self._knowledge
            ],
            "exportedAt": datetime.now(timezone.utc).isoformat(),
        }, ensure_ascii=False)

    def import_knowledge_base(self, payload: str) -> bool:
        """Replace the knowledge base; False (state untouched) when invalid."""
        try:
            data = json.loads(payload)
            knowledge = []
            for entry in data["rules"]:
                compiled = re.compile(entry["pattern"], _letters_to_flags(entry.get("flags", "")))
                rules = [
                    KnowledgeBaseRule(
                        confirm_type=r["confirmType"],
                        reject_types=tuple(r["rejectTypes"]),
                        min_confidence=int(r["minConfidence"]),
                        explanation=r["explanation"],
                    )
                    for r in entry["rules"]
                ]
                for rule in rules:
                    self._check_rule(rule)
                knowledge.append((compiled, rules))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, re.error):
            log.warning("Knowledge base import rejected", exc_info=True)
            return False
        self._knowledge = knowledge
        log.info("Knowledge base imported: %d pattern(s)", len(knowledge))
        return True

    # --- review -----------------------------------------------------------

    def review_single_line(
        self, text: str, kind: str, confidence: float,
    ) -> AuditSuggestion | None:
        """Knowledge-base check for one line; index is reported as -1."""
        return self._check_knowledge(-1, text, kind, confidence)

    def _check_knowledge(
        self, index: int, text: str, kind: str, confidence: float,
    ) -> AuditSuggestion | None:
        stripped = text.strip()
        for compiled, rules in self._knowledge:
            if not compiled.search(stripped):
                continue
            for rule in rules:
                if kind in rule.reject_types and rule.confirm_type != kind:
                    return AuditSuggestion(
                        line_index=index,
                        text=text,
                        original=kind,
                        suggested=rule.confirm_type,
                        confidence=int(min(100, confidence + 15)),
                        reason=rule.explanation,
                        severity="high" if confidence < 60 else "medium",
                    )
        return None

    @timed_node("rule_auditor", "programmatic")
    def audit(self, entries: list[dict]) -> list[AuditSuggestion]:
        """Review ``[{text, type, confidence}]`` and return suggestions,
        most severe first."""
        suggestions: list[AuditSuggestion] = []
        for i, entry in enumerate(entries):
            text, kind = entry["text"], entry["type"]
            confidence = float(entry.get("confidence", 0))

            found = self._check_knowledge(i, text, kind, confidence)
            if found:
                suggestions.append(found)

            if i == 0 or confidence >= _SEQUENCE_CHECK_BELOW:
                continue
            prev = entries[i - 1]["type"]
            valid = VALID_NEXT_TYPES.get(prev)
            if valid and kind not in valid:
                suggestions.append(AuditSuggestion(
                    line_index=i,
                    text=text,
                    original=kind,
                    suggested=valid[0],
                    confidence=int(confidence),
                    reason=f"unusual transition: {kind} after {prev}",
                    severity="low",
                ))

        suggestions.sort(key=lambda s: _SEVERITY_ORDER[s.severity])
        log.info("Rule auditor: %d suggestion(s) over %d line(s)", len(suggestions), len(entries))
        return suggestions
