"""Unit tests for the external review node"""

import asyncio
import json

import httpx
import pytest

from screenplay_classifier.models import (
    ACTION,
    BLANK,
    CHARACTER,
    DIALOGUE,
    HEADING_DETAIL,
    LINE_TYPES,
    ClassifiedLine,
)
from screenplay_classifier.nodes import review_client
from screenplay_classifier.nodes.external_review import (
    build_prompt,
    contextual_doubt,
    parse_review_response,
    review_lines,
    select_for_review,
)
from screenplay_classifier.nodes.review_client import ResponseParseError, ReviewClient
from tests.conftest import FakeReviewEndpoint


def _lines(*rows):
    return [
        ClassifiedLine(index=i, line_index=i, text=text, type=kind, doubt_score=doubt)
        for i, (text, kind, doubt) in enumerate(rows)
    ]


def _doubtful():
    return _lines(
        ("أحمد:", CHARACTER, 0),
        ("يخرج من الغرفة", DIALOGUE, 80),
        ("مرحباً", DIALOGUE, 10),
    )


def _reply(*suggestions):
    return 200, {"content": json.dumps(list(suggestions), ensure_ascii=False)}


# =============================================================================
# Selection and doubt
# =============================================================================


def test_contextual_doubt():
    """Test the sandwich and short-line rules"""
    lines = _lines(
        ("أحمد:", CHARACTER, 0),
        ("يدخل", ACTION, 0),
        ("مرحبا يا صديقي العزيز", DIALOGUE, 0),
    )
    assert contextual_doubt(lines, 1) == 50
    assert contextual_doubt(lines, 2) == 0


def test_contextual_doubt_close_top2():
    lines = _lines(("سارة وأحمد", ACTION, 0), ("يجلس الجميع حول الطاولة", ACTION, 0))
    lines[0].top2 = ((ACTION, 45), (CHARACTER, 40))
    assert contextual_doubt(lines, 0) == 60


def test_select_for_review_threshold():
    lines = _doubtful() + _lines(("", BLANK, 100))
    assert select_for_review(lines, 30) == [1]
    assert select_for_review(lines, 10) == [1, 2]
    assert select_for_review(lines, 30, review_all=True) == [0, 1, 2]


def test_strong_heading_detail_is_not_reviewed():
    lines = _lines(
        ("بيت أحمد", HEADING_DETAIL, 90),
        ("الباب - يدخل أحمد", HEADING_DETAIL, 90),
    )
    lines[0].heading_score = 80
    lines[1].heading_score = 80
    assert select_for_review(lines, 30) == [1]

    lines[0].heading_score = 50
    assert select_for_review(lines, 30) == [0, 1]


def test_prompt_carries_context():
    prompt = build_prompt(_doubtful(), [1])
    assert "يخرج من الغرفة" in prompt
    assert '"currentType": "dialogue"' in prompt
    assert '"verbStart": true' in prompt


def test_prompt_lists_every_line_type():
    prompt = build_prompt(_doubtful(), [1])
    for kind in LINE_TYPES:
        assert f"- {kind}:" in prompt


# =============================================================================
# Response parsing
# =============================================================================


class TestParseReviewResponse:
    def test_bare_array(self):
        [s] = parse_review_response('[{"index": 1, "suggestedType": "action", "confidence": 90, "reason": "verb"}]')
        assert (s.line_index, s.suggested_type, s.confidence, s.reason) == (1, ACTION, 90, "verb")

    def test_fenced_block(self):
        content = 'Here you go:\n```json\n[{"index": 2, "suggestion": "dialogue"}]\n```'
        [s] = parse_review_response(content)
        assert s.suggested_type == DIALOGUE
        assert s.confidence == 50
        assert s.reason == "no reason provided"

    def test_malformed_items_skipped(self):
        assert parse_review_response('[{"index": "one", "suggestedType": "action"}, 7]') == []

    def test_not_a_list(self):
        with pytest.raises(ResponseParseError):
            parse_review_response('{"index": 1}')

    def test_not_json(self):
        with pytest.raises(ValueError):
            parse_review_response("I think line 1 is action")


# =============================================================================
# Review runs
# =============================================================================


@pytest.mark.asyncio
async def test_suggestion_applied():
    endpoint = FakeReviewEndpoint([
        _reply({"index": 1, "suggestedType": ACTION, "confidence": 90, "reason": "movement verb"}),
    ])
    lines, stats = await review_lines(_doubtful(), endpoint.client(), doubt_threshold=30)

    assert lines[1].type == ACTION
    assert lines[1].review.original_type == DIALOGUE
    assert lines[1].review.confidence == 90
    assert (stats.reviewed_lines, stats.changed_lines, stats.api_calls) == (1, 1, 1)

    sent = endpoint.requests[0]
    assert sent["temperature"] == 0.1
    assert sent["model"] == review_client.get_model()
    assert sent["messages"][0]["role"] == "user"
    assert "يخرج من الغرفة" in sent["messages"][0]["content"]


@pytest.mark.asyncio
async def test_nothing_above_threshold_makes_no_call():
    endpoint = FakeReviewEndpoint([_reply()])
    lines, stats = await review_lines(_doubtful(), endpoint.client(), doubt_threshold=95)
    assert endpoint.requests == []
    assert stats.api_calls == 0


@pytest.mark.asyncio
async def test_unasked_and_invalid_suggestions_ignored():
    endpoint = FakeReviewEndpoint([
        _reply(
            {"index": 0, "suggestedType": ACTION},
            {"index": 1, "suggestedType": "villain"},
            {"index": 1, "suggestedType": DIALOGUE},
        ),
    ])
    lines, stats = await review_lines(_doubtful(), endpoint.client(), doubt_threshold=30)
    assert [ln.type for ln in lines] == [CHARACTER, DIALOGUE, DIALOGUE]
    assert stats.changed_lines == 0


@pytest.mark.asyncio
async def test_rate_limit_retried():
    """Test that 429 answers are retried until one succeeds"""
    endpoint = FakeReviewEndpoint([
        (429, {}),
        (429, {}),
        _reply({"index": 1, "suggestedType": ACTION}),
    ])
    lines, stats = await review_lines(_doubtful(), endpoint.client(), doubt_threshold=30)
    assert len(endpoint.requests) == 3
    assert lines[1].type == ACTION
    assert stats.api_calls == 1


@pytest.mark.asyncio
async def test_rate_limit_exhausted_keeps_classification():
    endpoint = FakeReviewEndpoint([(429, {})])
    lines, stats = await review_lines(_doubtful(), endpoint.client(), doubt_threshold=30)
    assert len(endpoint.requests) == 3
    assert lines[1].type == DIALOGUE
    assert stats.changed_lines == 0
    assert stats.reviewed_lines == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status,body", [
    (500, {"error": "boom"}),
    (200, {"content": "line 1 looks like action to me"}),
    (200, {"content": '{"index": 1, "suggestedType": "action"}'}),
])
async def test_failed_batch_degrades(status, body):
    endpoint = FakeReviewEndpoint([(status, body)])
    lines, stats = await review_lines(_doubtful(), endpoint.client(), doubt_threshold=30)
    assert lines[1].type == DIALOGUE
    assert stats.changed_lines == 0
    assert not stats.cancelled


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [httpx.ConnectError, httpx.ReadTimeout])
async def test_unreachable_endpoint_skips_only_that_batch(error):
    """Test that a network failure is not retried and later batches still run"""
    calls = []

    def flaky_endpoint(request):
        calls.append(json.loads(request.content))
        if len(calls) == 1:
            raise error("review endpoint unreachable", request=request)
        return httpx.Response(200, json={
            "content": json.dumps([{"index": 22, "suggestedType": ACTION}]),
        })

    lines = _lines(*[(f"سطر رقم {i}", DIALOGUE, 80) for i in range(25)])
    client = ReviewClient(
        api_url="http://review.test/api/ai/chat", max_attempts=3, backoff=0,
        transport=httpx.MockTransport(flaky_endpoint),
    )
    lines, stats = await review_lines(lines, client, doubt_threshold=30, batch_size=20)

    assert len(calls) == 2
    assert stats.api_calls == 2
    assert stats.reviewed_lines == 25
    assert stats.changed_lines == 1
    assert not stats.cancelled
    assert all(ln.type == DIALOGUE for ln in lines[:20])
    assert lines[22].type == ACTION


@pytest.mark.asyncio
async def test_batches():
    lines = _lines(*[(f"سطر رقم {i}", DIALOGUE, 80) for i in range(25)])
    endpoint = FakeReviewEndpoint([_reply()])
    _, stats = await review_lines(lines, endpoint.client(), doubt_threshold=30, batch_size=20)
    assert stats.api_calls == 2
    assert stats.reviewed_lines == 25


@pytest.mark.asyncio
async def test_cancelled_before_start():
    endpoint = FakeReviewEndpoint([_reply({"index": 1, "suggestedType": ACTION})])
    cancel = asyncio.Event()
    cancel.set()
    lines, stats = await review_lines(
        _doubtful(), endpoint.client(), doubt_threshold=30, cancel_event=cancel,
    )
    assert stats.cancelled
    assert stats.api_calls == 0
    assert lines[1].type == DIALOGUE


@pytest.mark.asyncio
async def test_cancelled_in_flight():
    """Test that firing the cancel signal abandons the pending request"""
    cancel = asyncio.Event()
    aborted = []

    async def slow_endpoint(request):
        cancel.set()
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            aborted.append(request.url.path)
            raise
        return httpx.Response(200, json={"content": '[{"index": 1, "suggestedType": "action"}]'})

    client = ReviewClient(
        api_url="http://review.test/api/ai/chat", max_attempts=1, backoff=0,
        transport=httpx.MockTransport(slow_endpoint),
    )
    lines, stats = await asyncio.wait_for(
        review_lines(_doubtful(), client, doubt_threshold=30, cancel_event=cancel),
        timeout=2,
    )
    assert stats.cancelled
    assert stats.reviewed_lines == 0
    assert lines[1].type == DIALOGUE
    assert aborted == ["/api/ai/chat"]


# =============================================================================
# Model selection
# =============================================================================


def test_set_model():
    previous = review_client.get_model()
    try:
        review_client.set_model("gemini-1.5-pro")
        assert review_client.get_model() == "gemini-1.5-pro"
    finally:
        review_client.set_model(previous)


def test_set_unknown_model():
    with pytest.raises(ValueError):
        review_client.set_model("gpt-unknown")
