"""Unit tests for AdaptiveWeightLearner"""

import json
import logging

import pytest

from screenplay_classifier.models import ACTION, CHARACTER, DIALOGUE
from screenplay_classifier.nodes.adaptive_weights import AdaptiveWeightLearner


def _correct(learner, times, original=ACTION, corrected=DIALOGUE, preceding=CHARACTER):
    for _ in range(times):
        learner.record_correction("يخرج من الغرفة", original, corrected, preceding)


def test_single_correction_changes_nothing(learner):
    _correct(learner, 1)
    assert learner.weight(CHARACTER, ACTION) == 1.0
    assert learner.correction_count() == 1


def test_repeated_pattern_dampens_and_boosts(learner):
    _correct(learner, 2)
    assert learner.weight(CHARACTER, ACTION) == pytest.approx(0.7)
    assert learner.weight(CHARACTER, DIALOGUE) == pytest.approx(1.3)
    assert learner.improve_score(ACTION, CHARACTER, 50) == pytest.approx(35)


def test_weights_compound(learner):
    """Test that every further correction of the pattern applies again"""
    _correct(learner, 3)
    assert learner.weight(CHARACTER, ACTION) == pytest.approx(0.49)
    assert learner.weight(CHARACTER, DIALOGUE) == pytest.approx(1.69)


def test_other_contexts_untouched(learner):
    _correct(learner, 3)
    assert learner.weight(None, ACTION) == 1.0
    assert learner.weight(DIALOGUE, ACTION) == 1.0


def test_missing_preceding_type_is_blank(learner):
    _correct(learner, 2, preceding=None)
    assert learner.weight(None, ACTION) == pytest.approx(0.7)
    assert learner.weight("blank", ACTION) == pytest.approx(0.7)


def test_repeats_are_logged(learner, caplog):
    with caplog.at_level(logging.WARNING):
        _correct(learner, 4)
    assert "Repeated misclassification" in caplog.text


def test_unknown_type_rejected(learner):
    with pytest.raises(ValueError):
        learner.record_correction("x", ACTION, "villain", CHARACTER)
    assert learner.correction_count() == 0


def test_statistics_and_common_errors(learner):
    _correct(learner, 3)
    _correct(learner, 1, original=CHARACTER, corrected=ACTION, preceding=ACTION)

    errors = learner.common_errors()
    assert errors[0] == {"pattern": "character -> action", "frequency": 3, "correctType": DIALOGUE}

    stats = learner.statistics()
    assert stats["totalCorrections"] == 4
    assert stats["uniquePatterns"] == 2
    assert stats["mostCommonError"] == "character -> action"


def test_reset(learner):
    _correct(learner, 2)
    learner.reset()
    assert learner.correction_count() == 0
    assert learner.weight(CHARACTER, ACTION) == 1.0


class TestExportImport:
    """Tests for persisting learned state"""

    def test_round_trip(self, learner):
        _correct(learner, 2)
        payload = learner.export_data()
        assert "exportedAt" in json.loads(payload)

        restored = AdaptiveWeightLearner()
        assert restored.import_data(payload)
        assert restored.correction_count() == 2
        assert restored.weight(CHARACTER, ACTION) == pytest.approx(0.7)

    @pytest.mark.parametrize("payload", [
        "not json",
        "{}",
        '{"corrections": [{"bogus": 1}], "weights": {}}',
        '{"corrections": [], "weights": {"a": "heavy"}}',
    ])
    def test_invalid_payload_keeps_state(self, learner, payload):
        _correct(learner, 2)
        assert not learner.import_data(payload)
        assert learner.correction_count() == 2
        assert learner.weight(CHARACTER, ACTION) == pytest.approx(0.7)
