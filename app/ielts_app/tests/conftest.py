import json as jsonlib

import pytest
import requests

from app.ielts_app.app import create_app, init_database
from app.ielts_app.models import db


WRITING_REPLY = {
    "band_score": 7.0,
    "task_response": 7.0,
    "coherence_cohesion": 6.5,
    "lexical_resource": 7.5,
    "grammatical_range": 6.5,
    "detailed_feedback": {
        "task_response": "Clear position maintained throughout.",
        "coherence_cohesion": "Paragraphing is logical.",
        "lexical_resource": "Good range of less common vocabulary.",
        "grammatical_range": "Some errors in complex sentences.",
    },
    "strengths": ["Clear position", "Relevant examples", "Logical paragraphs"],
    "improvements": ["Article use", "Comma splices", "Overuse of 'however'"],
    "suggestions": ["Proofread for articles", "Vary linking words", "Plan before writing"],
}

SPEAKING_REPLY = {
    "band_score": 6.5,
    "fluency_coherence": 7.0,
    "pronunciation": 6.0,
    "lexical_resource": 6.5,
    "grammatical_range": 6.5,
    "strengths": ["Speaks at length", "Natural fillers"],
    "improvements": ["Word stress", "Tense control"],
    "suggestions": ["Shadow native speakers", "Record and review answers"],
}


class _Resp:
    def __init__(self, status_code: int, payload=None, text: str = ''):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def raise_for_status(self):
        if 400 <= self.status_code:
            raise requests.exceptions.HTTPError(response=self)

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeProvider:
    """Stands in for ``requests.post``; replays queued replies in order."""

    def __init__(self):
        self.replies = []
        self.calls = []

    def reply_json(self, payload: dict):
        return self.reply_text(jsonlib.dumps(payload))

    def reply_text(self, content: str):
        self.replies.append(_Resp(200, {"choices": [{"message": {"role": "assistant", "content": content}}]}))
        return self

    def reply_status(self, status_code: int):
        self.replies.append(_Resp(status_code, {"error": {"message": "provider error"}}))
        return self

    def reply_raw(self, response):
        self.replies.append(response)
        return self

    def raise_error(self, exc: Exception):
        self.replies.append(exc)
        return self

    def __call__(self, url, json=None, headers=None, timeout=None):  # noqa: A002 - mirrors requests.post
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if not self.replies:
            raise AssertionError("Unexpected call to feedback provider")
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def app():
    application = create_app('testing')
    init_database(application)
    with application.app_context():
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def orchestrator(app):
    return app.extensions['ielts_orchestrator']


@pytest.fixture
def provider(monkeypatch):
    fake = FakeProvider()
    monkeypatch.setattr("app.ielts_app.services.chat_client.requests.post", fake)
    return fake
