import logging
import re

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from . import config
from .models import LINE_TYPES, ClassifiedLine, KnowledgeBaseRule
from .nodes import external_review
from .nodes.adaptive_weights import AdaptiveWeightLearner
from .nodes.document_memory import DocumentMemory
from .nodes.review_client import AVAILABLE_MODELS, get_model, set_model
from .nodes.rule_auditor import RuleAuditor
from .pipeline import run_pipeline

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
log = logging.getLogger(__name__)

app = FastAPI(
    title="Screenplay Line Classifier",
    description="Classifies Arabic screenplay lines into structural types with doubt scores",
)

# Process-wide state: the learner and the knowledge base outlive documents;
# session memories live until the session is deleted or evicted.
learner = AdaptiveWeightLearner()
auditor = RuleAuditor()
sessions: dict[str, DocumentMemory] = {}


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ClassifyRequest(_Body):
    text: str
    previous_types: list[str] | None = Field(default=None, alias="previousTypes")
    session_id: str | None = Field(default=None, alias="sessionId")
    audit: bool = False
    review: bool = False
    doubt_threshold: float | None = Field(default=None, alias="doubtThreshold")


class ClassifyResponse(BaseModel):
    lines: list[dict]
    audit: list[dict]
    review: dict | None
    statistics: dict
    report: dict


class AuditLine(_Body):
    text: str
    type: str
    confidence: float = Field(ge=0, le=100)


class AuditRequest(_Body):
    lines: list[AuditLine]


class ReviewLine(_Body):
    text: str
    type: str
    doubt_score: float | None = Field(default=None, alias="doubtScore", ge=0, le=100)
    heading_score: float | None = Field(default=None, alias="headingScore")


class ReviewRequest(_Body):
    lines: list[ReviewLine]
    doubt_threshold: float | None = Field(default=None, alias="doubtThreshold")
    review_all: bool = Field(default=False, alias="reviewAll")


class CorrectionRequest(_Body):
    line_text: str = Field(alias="lineText")
    original_type: str = Field(alias="originalType")
    corrected_type: str = Field(alias="correctedType")
    preceding_type: str | None = Field(default=None, alias="precedingType")


class ImportRequest(BaseModel):
    data: str


class KnowledgeRuleBody(_Body):
    confirm_type: str = Field(alias="confirmType")
    reject_types: list[str] = Field(alias="rejectTypes")
    min_confidence: int = Field(alias="minConfidence", ge=0, le=100)
    explanation: str


class KnowledgeEntryRequest(BaseModel):
    pattern: str
    rules: list[KnowledgeRuleBody]


class ModelRequest(BaseModel):
    model: str


def _check_types(kinds: list[str]) -> None:
    unknown = sorted(set(kinds) - LINE_TYPES)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown line types: {unknown}")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    body = await request.body()
    log.error("422 validation error on %s %s", request.method, request.url.path)
    log.error("Validation errors: %s", exc.errors())
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors(), "body_preview": body.decode(errors="replace")[:500]},
    )


def _session_memory(session_id: str) -> DocumentMemory:
    """Fetch or create a session memory, keeping at most MAX_SESSIONS."""
    memory = sessions.pop(session_id, None) or DocumentMemory()
    sessions[session_id] = memory
    while len(sessions) > max(1, config.MAX_SESSIONS):
        oldest = next(iter(sessions))
        sessions.pop(oldest).clear()
        log.info("Session %s evicted (limit %d)", oldest, config.MAX_SESSIONS)
    return memory


@app.post("/classify", response_model=ClassifyResponse)
async def classify(request: ClassifyRequest):
    log.info("POST /classify text_length=%d session=%s review=%s",
             len(request.text), request.session_id, request.review)
    _check_types(request.previous_types or [])

    memory = None
    if request.session_id:
        memory = _session_memory(request.session_id)

    result = await run_pipeline(
        request.text,
        previous_types=request.previous_types,
        memory=memory,
        learner=learner,
        auditor=auditor if request.audit else None,
        review=request.review,
        doubt_threshold=request.doubt_threshold,
    )
    return ClassifyResponse(
        lines=result.lines,
        audit=result.audit,
        review=result.review,
        statistics=result.statistics,
        report=result.report,
    )


@app.delete("/sessions/{session_id}")
async def clear_session(session_id: str):
    memory = sessions.pop(session_id, None)
    if memory is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    memory.clear()
    return {"cleared": session_id}


@app.post("/audit")
async def audit_lines(request: AuditRequest):
    _check_types([ln.type for ln in request.lines])
    suggestions = auditor.audit([ln.model_dump() for ln in request.lines])
    return {"suggestions": [s.to_dict() for s in suggestions]}


@app.post("/review")
async def review(request: ReviewRequest):
    _check_types([ln.type for ln in request.lines])
    records = [
        ClassifiedLine(
            index=i, line_index=i, text=ln.text, type=ln.type,
            doubt_score=ln.doubt_score or 0, heading_score=ln.heading_score,
        )
        for i, ln in enumerate(request.lines)
    ]
    missing = [i for i, ln in enumerate(request.lines) if ln.doubt_score is None]
    external_review.assign_rule_doubt(records, missing)

    records, stats = await external_review.review_lines(
        records,
        doubt_threshold=request.doubt_threshold,
        review_all=request.review_all,
    )
    return {"lines": [r.to_dict() for r in records], "stats": stats.to_dict()}


@app.post("/corrections")
async def record_correction(request: CorrectionRequest):
    try:
        learner.record_correction(
            request.line_text, request.original_type,
            request.corrected_type, request.preceding_type,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return learner.statistics()


@app.get("/adaptive/export")
async def export_adaptive():
    return {"data": learner.export_data()}


@app.post("/adaptive/import")
async def import_adaptive(request: ImportRequest):
    if not learner.import_data(request.data):
        raise HTTPException(status_code=400, detail="Invalid adaptive weights payload")
    return learner.statistics()


@app.get("/knowledge-base/export")
async def export_knowledge_base():
    return {"data": auditor.export_knowledge_base()}


@app.post("/knowledge-base/import")
async def import_knowledge_base(request: ImportRequest):
    if not auditor.import_knowledge_base(request.data):
        raise HTTPException(status_code=400, detail="Invalid knowledge base payload")
    return {"rules": auditor.rule_count()}


@app.post("/knowledge-base/rules")
async def add_knowledge_rule(request: KnowledgeEntryRequest):
    try:
        auditor.add_rule(request.pattern, [
            KnowledgeBaseRule(r.confirm_type, tuple(r.reject_types), r.min_confidence, r.explanation)
            for r in request.rules
        ])
    except (ValueError, TypeError, re.error) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"rules": auditor.rule_count()}


@app.get("/model")
async def current_model():
    return {"model": get_model(), "available": list(AVAILABLE_MODELS)}


@app.put("/model")
async def change_model(request: ModelRequest):
    try:
        set_model(request.model)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"model": get_model()}


@app.get("/health")
async def health():
    return {"status": "ok", "model": get_model(), "sessions": len(sessions)}


def serve() -> None:
    uvicorn.run(app, host=config.HOST, port=config.PORT)
