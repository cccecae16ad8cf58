"""Adaptive Weight Learner.

Learns from user corrections.  When the same mistake (a type wrongly
chosen after a given preceding type) is corrected more than once, the
score of the wrong type in that context is damped and the correct type
is boosted.  Weights are recomputed from the whole correction log on
every correction, so a repeating pattern compounds.

The learner outlives document sessions; callers own its lifetime and
persist it through ``export_data`` / ``import_data``.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import asdict
from datetime import datetime, timezone

from ..models import BLANK, LINE_TYPES, CorrectionEvent

log = logging.getLogger(__name__)

_DAMPEN = 0.7
_BOOST = 1.3
_REPEAT_WARNING = 3


def _key(preceding: str | None, kind: str) -> str:
    return f"{preceding or BLANK} -> {kind}"


class AdaptiveWeightLearner:
    def __init__(self) -> None:
        self._corrections: list[CorrectionEvent] = []
        self._weights: dict[str, float] = {}

    def record_correction(
        self,
        line_text: str,
        original_type: str,
        corrected_type: str,
        preceding_type: str | None = None,
    ) -> None:
        for kind in (original_type, corrected_type):
            if kind not in LINE_TYPES:
                raise ValueError(f"unknown line type: {kind!r}")
        event = CorrectionEvent(
            line_text=line_text,
            original_type=original_type,
            corrected_type=corrected_type,
            preceding_type=preceding_type or BLANK,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        self._corrections.append(event)
        log.info("Correction recorded: %s -> %s (after %s)",
                 original_type, corrected_type, event.preceding_type)
        self._update_weights()
        self._warn_on_repeats()

    def weight(self, preceding_type: str | None, kind: str) -> float:
        return self._weights.get(_key(preceding_type, kind), 1.0)

    def improve_score(self, kind: str, preceding_type: str | None, base: float) -> float:
        return base * self.weight(preceding_type, kind)

    def _patterns(self) -> dict[str, dict]:
        """Group corrections by ``preceding|original`` with their latest fix."""
        patterns: dict[str, dict] = {}
        for c in self._corrections:
            key = f"{c.preceding_type}|{c.original_type}"
            entry = patterns.setdefault(key, {
                "preceding": c.preceding_type,
                "wrong": c.original_type,
                "frequency": 0,
                "fixes": Counter(),
            })
            entry["frequency"] += 1
            entry["fixes"][c.corrected_type] += 1
        return patterns

    def _update_weights(self) -> None:
        for pattern in self._patterns().values():
            if pattern["frequency"] <= 1:
                continue
            correct = pattern["fixes"].most_common(1)[0][0]
            wrong_key = _key(pattern["preceding"], pattern["wrong"])
            right_key = _key(pattern["preceding"], correct)
            self._weights[wrong_key] = self._weights.get(wrong_key, 1.0) * _DAMPEN
            self._weights[right_key] = self._weights.get(right_key, 1.0) * _BOOST

    def _warn_on_repeats(self) -> None:
        for pattern in self._patterns().values():
            if pattern["frequency"] > _REPEAT_WARNING:
                log.warning("Repeated misclassification: %s after %s corrected %d times",
                            pattern["wrong"], pattern["preceding"], pattern["frequency"])

    def common_errors(self) -> list[dict]:
        errors = [
            {
                "pattern": f"{p['preceding']} -> {p['wrong']}",
                "frequency": p["frequency"],
                "correctType": p["fixes"].most_common(1)[0][0],
            }
            for p in self._patterns().values()
        ]
        errors.sort(key=lambda e: e["frequency"], reverse=True)
        return errors

    def correction_count(self) -> int:
        return len(self._corrections)

    def statistics(self) -> dict:
        errors = self.common_errors()
        weights = list(self._weights.values())
        return {
            "totalCorrections": len(self._corrections),
            "uniquePatterns": len(self._weights),
            "mostCommonError": errors[0]["pattern"] if errors else None,
            "averageWeight": round(sum(weights) / len(weights), 4) if weights else 1.0,
        }

    def reset(self) -> None:
        self._corrections = []
        self._weights = {}
        log.info("Adaptive weights reset")

    def export_data(self) -> str:
        return json.dumps({
            "corrections": [asdict(c) for c in self._corrections],
            "weights": self._weights,
            "exportedAt": datetime.now(timezone.utc).isoformat(),
        }, ensure_ascii=False)

    def import_data(self, payload: str) -> bool:
        """Replace the learned state with *payload*.

        Returns False and keeps the current state when it cannot be read.
        """
        try:
            data = json.loads(payload)
            corrections = [CorrectionEvent(**c) for c in data["corrections"]]
            weights = {str(k): float(v) for k, v in data["weights"].items()}
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError):
            log.warning("Adaptive weights import rejected", exc_info=True)
            return False
        self._corrections = corrections
        self._weights = weights
        log.info("Adaptive weights imported: %d corrections, %d weights",
                 len(corrections), len(weights))
        return True
