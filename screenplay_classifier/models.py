"""Data models for the screenplay line classification pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


HEADING_FULL = "heading-full"
HEADING_NUMBER_ONLY = "heading-number-only"
HEADING_DETAIL = "heading-detail"
HEADING_PLACE = "heading-place"
ACTION = "action"
CHARACTER = "character"
DIALOGUE = "dialogue"
PARENTHETICAL = "parenthetical"
TRANSITION = "transition"
INVOCATION = "invocation"
BLANK = "blank"

LINE_TYPES = frozenset([
    HEADING_FULL, HEADING_NUMBER_ONLY, HEADING_DETAIL, HEADING_PLACE,
    ACTION, CHARACTER, DIALOGUE, PARENTHETICAL,
    TRANSITION, INVOCATION, BLANK,
])

HEADING_TYPES = frozenset([
    HEADING_FULL, HEADING_NUMBER_ONLY, HEADING_DETAIL, HEADING_PLACE,
])

# Types that end a character/dialogue block when scanning backwards.
BLOCK_BREAKERS = HEADING_TYPES | {TRANSITION, INVOCATION}

# Scored candidates, in tie-break order.
CONTESTED_TYPES = (CHARACTER, DIALOGUE, ACTION, PARENTHETICAL)

# Which types may follow each type.  The first entry is the preferred
# successor used when a transition is flagged as unusual.
VALID_NEXT_TYPES: dict[str, tuple[str, ...]] = {
    INVOCATION: (HEADING_FULL, HEADING_NUMBER_ONLY, ACTION, TRANSITION, BLANK),
    HEADING_FULL: (ACTION, HEADING_PLACE, HEADING_DETAIL, CHARACTER, BLANK),
    HEADING_NUMBER_ONLY: (HEADING_DETAIL, HEADING_PLACE, ACTION, BLANK),
    HEADING_PLACE: (HEADING_DETAIL, ACTION, CHARACTER, BLANK),
    HEADING_DETAIL: (ACTION, HEADING_DETAIL, HEADING_PLACE, CHARACTER, BLANK),
    ACTION: (CHARACTER, TRANSITION, ACTION, BLANK, HEADING_FULL, HEADING_NUMBER_ONLY),
    CHARACTER: (DIALOGUE, PARENTHETICAL, BLANK),
    PARENTHETICAL: (DIALOGUE, BLANK),
    DIALOGUE: (CHARACTER, ACTION, PARENTHETICAL, DIALOGUE, TRANSITION, BLANK,
               HEADING_FULL, HEADING_NUMBER_ONLY),
    TRANSITION: (HEADING_FULL, HEADING_NUMBER_ONLY, ACTION, BLANK),
    BLANK: tuple(sorted(LINE_TYPES)),
}

CONFIDENCE_TIERS = ("high", "medium", "low")
REVIEW_DOUBT = 60


def tier_for(score: float) -> str:
    """Map a 0-100 score to its confidence tier."""
    if score >= 70:
        return "high"
    if score >= 40:
        return "medium"
    return "low"


def clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


@dataclass
class ClassificationScore:
    """Score of one candidate type for one line.

    The score is kept within 0-100 on every adjustment; the tier is
    always derived from it.
    """

    score: float
    reasons: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.score = clamp(self.score)

    @property
    def confidence(self) -> str:
        return tier_for(self.score)

    def adjust(self, points: float, reason: str) -> None:
        self.score = clamp(self.score + points)
        self.reasons.append(reason)

    def scale(self, factor: float) -> None:
        self.score = clamp(self.score * factor)


@dataclass
class FallbackRecord:
    original_type: str
    fallback_type: str
    reason: str


@dataclass
class ContextLine:
    text: str
    type: str


@dataclass
class LineContext:
    """Neighbourhood of the line being classified."""

    previous_lines: list[ContextLine] = field(default_factory=list)
    next_lines: list[ContextLine] = field(default_factory=list)
    next_line: Optional[str] = None
    current_length: int = 0
    current_word_count: int = 0
    next_length: int = 0
    next_word_count: int = 0
    has_punctuation: bool = False
    next_has_punctuation: bool = False

    @property
    def previous_type(self) -> Optional[str]:
        return self.previous_lines[-1].type if self.previous_lines else None


@dataclass
class DialogueBlockInfo:
    in_block: bool
    distance_from_character: int = 0


@dataclass
class SceneHeaderParts:
    """Result of consuming a scene heading that may span several lines."""

    scene_number: str
    time_detail: str = ""
    place: str = ""
    consumed_line_count: int = 1
    remaining_action: Optional[str] = None
    line_roles: list[str] = field(default_factory=list)  # one type per consumed line


@dataclass
class ClassificationResult:
    type: str
    scores: dict[str, ClassificationScore]
    doubt_score: float = 0
    top2: Optional[tuple[tuple[str, float], tuple[str, float]]] = None
    fallback: Optional[FallbackRecord] = None

    @property
    def score(self) -> float:
        chosen = self.scores.get(self.type)
        return chosen.score if chosen else 0

    @property
    def confidence(self) -> str:
        return tier_for(self.score)

    @property
    def needs_review(self) -> bool:
        return self.doubt_score >= REVIEW_DOUBT


@dataclass
class ConfidenceDiagnostics:
    overall: int
    context: int
    pattern: int
    history: int
    alternatives: list[dict] = field(default_factory=list)
    is_uncertain: bool = False
    explanation: str = ""


@dataclass
class ReviewInfo:
    original_type: str
    confidence: int
    reason: str


@dataclass
class ClassifiedLine:
    """Internal mutable record flowing through the pipeline.

    Post-passes (diagnostics, external review) enrich it in place.
    Converted to the output dict format only at the end.
    """

    index: int
    line_index: int
    text: str
    type: str
    confidence: str = "high"
    score: float = 100
    doubt_score: float = 0
    top2: Optional[tuple[tuple[str, float], tuple[str, float]]] = None
    fallback: Optional[FallbackRecord] = None
    alternatives: list[tuple[str, float]] = field(default_factory=list)
    heading_score: Optional[float] = None
    diagnostics: Optional[ConfidenceDiagnostics] = None
    review: Optional[ReviewInfo] = None

    @property
    def needs_review(self) -> bool:
        return self.doubt_score >= REVIEW_DOUBT

    def to_dict(self) -> dict:
        out = {
            "index": self.index,
            "lineIndex": self.line_index,
            "text": self.text,
            "type": self.type,
            "confidenceTier": self.confidence,
            "score": round(self.score, 2),
            "doubtScore": round(self.doubt_score, 2),
            "needsReview": self.needs_review,
        }
        if self.top2:
            out["top2Candidates"] = [
                {"type": t, "score": round(s, 2)} for t, s in self.top2
            ]
        if self.fallback:
            out["fallbackApplied"] = {
                "originalType": self.fallback.original_type,
                "fallbackType": self.fallback.fallback_type,
                "reason": self.fallback.reason,
            }
        if self.diagnostics:
            d = self.diagnostics
            out["diagnostics"] = {
                "overall": d.overall,
                "context": d.context,
                "pattern": d.pattern,
                "history": d.history,
                "alternatives": d.alternatives,
                "isUncertain": d.is_uncertain,
                "explanation": d.explanation,
            }
        if self.review:
            out["review"] = {
                "originalType": self.review.original_type,
                "confidence": self.review.confidence,
                "reason": self.review.reason,
            }
        return out


@dataclass
class CorrectionEvent:
    line_text: str
    original_type: str
    corrected_type: str
    preceding_type: str
    timestamp: str
    weight: float = 1.0


@dataclass
class KnowledgeBaseRule:
    confirm_type: str
    reject_types: tuple[str, ...]
    min_confidence: int
    explanation: str


@dataclass
class AuditSuggestion:
    line_index: int
    text: str
    original: str
    suggested: str
    confidence: int
    reason: str
    severity: str  # "high" | "medium" | "low"

    def to_dict(self) -> dict:
        return {
            "lineIndex": self.line_index,
            "text": self.text,
            "original": self.original,
            "suggested": self.suggested,
            "confidence": self.confidence,
            "reason": self.reason,
            "severity": self.severity,
        }


@dataclass
class ReviewSuggestion:
    line_index: int
    suggested_type: str
    confidence: int = 50
    reason: str = "no reason provided"


@dataclass
class ReviewStats:
    total_lines: int = 0
    reviewed_lines: int = 0
    changed_lines: int = 0
    api_calls: int = 0
    total_time_ms: int = 0
    cancelled: bool = False

    def to_dict(self) -> dict:
        per_line = self.total_time_ms / self.reviewed_lines if self.reviewed_lines else 0
        return {
            "totalLines": self.total_lines,
            "reviewedLines": self.reviewed_lines,
            "changedLines": self.changed_lines,
            "apiCalls": self.api_calls,
            "totalTimeMs": self.total_time_ms,
            "averageTimePerLine": round(per_line, 2),
            "cancelled": self.cancelled,
        }


@dataclass
class NodeMetrics:
    """Timing and stats for one pipeline node."""

    node_name: str
    node_type: str  # "programmatic" | "ai"
    duration_ms: int = 0
    lines_processed: int = 0
    lines_affected: int = 0


@dataclass
class PipelineResult:
    """Complete output of the pipeline."""

    lines: list[dict] = field(default_factory=list)
    audit: list[dict] = field(default_factory=list)
    review: Optional[dict] = None
    statistics: dict = field(default_factory=dict)
    report: dict = field(default_factory=dict)
