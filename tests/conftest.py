"""Shared pytest fixtures"""

import json

import httpx
import pytest

from screenplay_classifier.models import ContextLine
from screenplay_classifier.nodes.adaptive_weights import AdaptiveWeightLearner
from screenplay_classifier.nodes.document_memory import DocumentMemory
from screenplay_classifier.nodes.review_client import ReviewClient
from screenplay_classifier.nodes.rule_auditor import RuleAuditor


@pytest.fixture
def memory():
    """Fresh per-document memory"""
    return DocumentMemory()


@pytest.fixture
def learner():
    return AdaptiveWeightLearner()


@pytest.fixture
def auditor():
    """Auditor with the default knowledge base"""
    return RuleAuditor()


def history(*pairs):
    """Build resolved history from ``(text, type)`` pairs."""
    return [ContextLine(text, kind) for text, kind in pairs]


class FakeReviewEndpoint:
    """Scripted stand-in for the review endpoint.

    Each call pops the next ``(status, body)`` from *replies*; the last
    reply repeats once the script runs out.
    """

    def __init__(self, replies):
        self.replies = list(replies)
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        status, body = self.replies[0] if len(self.replies) == 1 else self.replies.pop(0)
        return httpx.Response(status, json=body)

    def client(self) -> ReviewClient:
        return ReviewClient(
            api_url="http://review.test/api/ai/chat",
            timeout=5,
            max_attempts=3,
            backoff=0,
            transport=httpx.MockTransport(self),
        )
