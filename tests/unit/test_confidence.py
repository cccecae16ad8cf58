"""Unit tests for confidence diagnostics and coverage validation"""

from collections import Counter

from screenplay_classifier.models import ACTION, BLANK, CHARACTER, DIALOGUE, ClassifiedLine
from screenplay_classifier.nodes.confidence import attach_diagnostics, diagnose
from screenplay_classifier.nodes.validation import validate_coverage
from screenplay_classifier.pipeline import classify_document


def test_first_line_has_neutral_context():
    line = ClassifiedLine(0, 0, "أحمد:", CHARACTER, score=100)
    d = diagnose(line, None, Counter())
    assert (d.pattern, d.context, d.history) == (100, 60, 50)
    assert not d.is_uncertain


def test_valid_successor():
    line = ClassifiedLine(1, 1, "مرحبا", DIALOGUE, score=100)
    d = diagnose(line, CHARACTER, Counter({CHARACTER: 1}))
    assert d.context == 85
    assert d.history == 30
    assert d.overall == 77


def test_unusual_successor_is_uncertain():
    line = ClassifiedLine(1, 1, "يدخل", ACTION, score=50)
    d = diagnose(line, CHARACTER, Counter({CHARACTER: 1}))
    assert d.context == 35
    assert d.is_uncertain
    assert d.explanation == "action rarely follows character"


def test_needs_review_is_always_uncertain():
    line = ClassifiedLine(0, 0, "سارة", CHARACTER, score=100, doubt_score=70)
    assert diagnose(line, None, Counter()).is_uncertain


def test_attach_diagnostics_skips_blanks():
    records = classify_document("أحمد:\n\nمرحباً كيف حالك؟")
    attach_diagnostics(records)
    assert records[1].type == BLANK
    assert records[1].diagnostics is None
    assert records[2].diagnostics.context == 85
    assert "diagnostics" in records[0].to_dict()


def test_coverage_passes_for_classified_document():
    text = "مشهد 5\nبيت أحمد - يدخل أحمد بسرعة\n\nسارة: أين كنت؟"
    records = classify_document(text)
    assert validate_coverage(records, 4) == (True, [])


def test_coverage_reports_missing_lines():
    records = classify_document("أحمد:\nمرحباً كيف حالك؟")
    passed, issues = validate_coverage(records[:1], 2)
    assert not passed
    assert issues[0].startswith("Lines without a record")


def test_coverage_reports_bad_doubt():
    records = [ClassifiedLine(0, 0, "x", ACTION, doubt_score=120)]
    passed, issues = validate_coverage(records, 1)
    assert not passed
    assert "Doubt outside 0-100" in issues[0]
