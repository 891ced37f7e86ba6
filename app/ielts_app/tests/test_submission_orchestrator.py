import dataclasses

import pytest
from sqlalchemy.exc import OperationalError

from app.ielts_app.models import ListeningResponse, ReadingResponse, TestSession, WritingSubmission, db
from app.ielts_app.services.errors import InvalidInput, PersistenceFailure, RecordNotFound
from app.ielts_app.services.feedback_types import NEUTRAL_BAND, STATUS_FALLBACK, STATUS_SCORED
from app.ielts_app.services.submission_orchestrator import SubmissionProgress
from app.ielts_app.services.submission_store import SubmissionStore

from conftest import SPEAKING_REPLY, WRITING_REPLY

ESSAY = {
    "task_type": "task2",
    "prompt": "Some people believe university is the best route to a career. Discuss both views.",
    "content": "University gives students knowledge and networks that employers value. " * 10,
    "submission_type": "typed",
}

RECORDING = {
    "part_number": 1,
    "question": "Do you work or are you a student?",
    "transcript": "I am a student at the moment, I study engineering in my hometown.",
    "duration": 40,
}


class _FailingSession:
    """Real session whose commit always fails."""

    def __init__(self, session):
        self._session = session

    def commit(self):
        raise OperationalError("INSERT INTO writing_submissions", {}, Exception("disk I/O error"))

    def __getattr__(self, name):
        return getattr(self._session, name)


class _FailingDatabase:
    def __init__(self):
        self.session = _FailingSession(db.session)


# ---------------------------------------------------------------------------
# Objective path
# ---------------------------------------------------------------------------

def test_reading_end_to_end_scenario(orchestrator):
    report = orchestrator.submit_objective(
        "reading",
        {"1": "TRUE", "2": "A"},
        {"1": "true", "2": "b"},
        2,
    )

    assert report.score == 1
    assert report.total_questions == 2
    assert report.band_score == 5.0
    assert report.status == STATUS_SCORED
    assert report.feedback.strengths

    stored = db.session.get(ReadingResponse, report.id)
    assert stored.score == 1
    assert stored.band_score == 5.0
    assert stored.answers == {"1": "TRUE", "2": "A"}


def test_total_questions_defaults_to_answer_key_size(orchestrator):
    report = orchestrator.submit_objective("listening", {"1": "Riverside"}, {"1": "riverside", "2": "120"})

    assert report.total_questions == 2
    assert report.band_score == 5.0
    assert report.to_dict()["ai_feedback"]["suggestions"] == [
        "Listen to English podcasts daily",
        "Practice dictation exercises",
    ]


def test_answer_key_can_come_from_material(orchestrator):
    answers = {"1": "Riverside", "2": "120", "3": "4-6", "4": "Sundays", "5": "true"}

    report = orchestrator.submit_objective("listening", answers, material_id="listening-1")

    assert report.score == 5
    assert report.band_score == 9.0
    stored = db.session.get(ListeningResponse, report.id)
    assert stored.material_id == "listening-1"


def test_zero_total_is_invalid_and_nothing_is_stored(orchestrator):
    with pytest.raises(InvalidInput):
        orchestrator.submit_objective("reading", {"1": "a"}, {"1": "a"}, 0)
    assert ReadingResponse.query.count() == 0


@pytest.mark.parametrize(
    "answers,correct,total",
    [
        (["a"], {"1": "a"}, 1),
        ({"1": "a"}, "a", 1),
        ({"1": "a"}, {}, 1),
        ({"1": "a"}, {"1": "a", "2": "b"}, 1),
        ({"1": "a"}, None, None),
    ],
)
def test_malformed_answer_sets_are_invalid(orchestrator, answers, correct, total):
    with pytest.raises(InvalidInput):
        orchestrator.submit_objective("reading", answers, correct, total)
    assert ReadingResponse.query.count() == 0


def test_session_is_marked_completed(orchestrator):
    session_info = orchestrator.create_test_session("reading", user_id="user-1")

    orchestrator.submit_objective("reading", {"1": "a"}, {"1": "a"}, 1, session_id=session_info["id"])

    session_row = db.session.get(TestSession, session_info["id"])
    assert session_row.status == "completed"
    assert session_row.completed_at is not None


def test_unknown_session_is_invalid(orchestrator):
    with pytest.raises(InvalidInput):
        orchestrator.submit_objective("reading", {"1": "a"}, {"1": "a"}, 1, session_id=999)


def test_fractional_total_questions_is_invalid(orchestrator):
    with pytest.raises(InvalidInput):
        orchestrator.submit_objective("reading", {"1": "a", "2": "b"}, {"1": "a", "2": "b"}, 2.9)
    assert ReadingResponse.query.count() == 0


def test_whole_number_float_total_is_accepted(orchestrator):
    report = orchestrator.submit_objective("reading", {"1": "a"}, {"1": "a"}, 2.0)
    assert report.total_questions == 2


@pytest.mark.parametrize("correct", [{"1": ""}, {"1": None}, {"1": "a", "2": "   "}])
def test_blank_answer_key_values_are_invalid(orchestrator, correct):
    with pytest.raises(InvalidInput):
        orchestrator.submit_objective("reading", {"1": "", "2": ""}, correct)
    assert ReadingResponse.query.count() == 0


def test_session_update_failure_rolls_back_objective_submission(orchestrator, monkeypatch):
    session_info = orchestrator.create_test_session("reading")

    def failing_stage_update(table, record_id, patch):
        raise PersistenceFailure(f"Could not update {table} record")

    monkeypatch.setattr(orchestrator.store, "_stage_update", failing_stage_update)

    with pytest.raises(PersistenceFailure):
        orchestrator.submit_objective("reading", {"1": "a"}, {"1": "a"}, 1, session_id=session_info["id"])

    assert ReadingResponse.query.count() == 0
    assert db.session.get(TestSession, session_info["id"]).status == "in_progress"


def test_session_update_failure_rolls_back_writing_submission(orchestrator, provider, monkeypatch):
    provider.reply_json(WRITING_REPLY)
    session_info = orchestrator.create_test_session("writing")

    def failing_stage_update(table, record_id, patch):
        raise PersistenceFailure(f"Could not update {table} record")

    monkeypatch.setattr(orchestrator.store, "_stage_update", failing_stage_update)

    with pytest.raises(PersistenceFailure):
        orchestrator.submit_writing(dict(ESSAY, session_id=session_info["id"]))

    assert WritingSubmission.query.count() == 0
    assert db.session.get(TestSession, session_info["id"]).status == "in_progress"


def test_unknown_test_type_is_invalid(orchestrator):
    with pytest.raises(InvalidInput):
        orchestrator.create_test_session("grammar")


# ---------------------------------------------------------------------------
# Subjective path
# ---------------------------------------------------------------------------

def test_writing_with_provider_feedback(orchestrator, provider):
    provider.reply_json(WRITING_REPLY)

    report = orchestrator.submit_writing(ESSAY, user_id="user-1")

    assert report.status == STATUS_SCORED
    assert report.band_score == 7.0
    assert report.word_count == 90
    data = report.to_dict()
    assert data["task_type"] == "writing_task2"
    assert data["lexical_resource"] == 7.5
    assert "fluency_coherence" not in data
    assert data["ai_feedback"]["detailed_feedback"]["task_response"]

    stored = db.session.get(WritingSubmission, report.id)
    assert stored.status == STATUS_SCORED
    assert stored.user_id == "user-1"
    assert stored.submission_type == "typed"


def test_prose_reply_falls_back_to_neutral_feedback(orchestrator, provider):
    provider.reply_text("Your essay is good. Band 7. Keep practising!")

    report = orchestrator.submit_writing(ESSAY)

    assert report.status == STATUS_FALLBACK
    assert report.is_fallback
    assert report.band_score == NEUTRAL_BAND
    assert set(report.feedback.criterion_scores().values()) == {NEUTRAL_BAND}
    assert report.feedback.strengths and report.feedback.improvements and report.feedback.suggestions
    assert db.session.get(WritingSubmission, report.id).status == STATUS_FALLBACK


def test_provider_outage_falls_back_for_speaking(orchestrator, provider):
    provider.reply_status(500)

    report = orchestrator.submit_speaking(RECORDING)

    assert report.status == STATUS_FALLBACK
    assert report.task_type == "speaking_part1"
    assert report.band_score == NEUTRAL_BAND
    assert report.to_dict()["pronunciation"] == NEUTRAL_BAND


def test_retry_policy_is_honoured(orchestrator, provider):
    orchestrator.settings = dataclasses.replace(orchestrator.settings, max_attempts=3)
    provider.reply_status(503).reply_status(503).reply_json(SPEAKING_REPLY)

    report = orchestrator.submit_speaking(RECORDING)

    assert report.status == STATUS_SCORED
    assert len(provider.calls) == 3


def test_malformed_reply_is_not_retried(orchestrator, provider):
    orchestrator.settings = dataclasses.replace(orchestrator.settings, max_attempts=3)
    provider.reply_text("not json at all")

    report = orchestrator.submit_writing(ESSAY)

    assert report.status == STATUS_FALLBACK
    assert len(provider.calls) == 1


def test_invalid_writing_payload_never_calls_provider(orchestrator, provider):
    with pytest.raises(InvalidInput):
        orchestrator.submit_writing(dict(ESSAY, content=""))
    assert provider.calls == []
    assert WritingSubmission.query.count() == 0


def test_round_trip_preserves_core_fields(orchestrator, provider):
    provider.reply_json(WRITING_REPLY)
    report = orchestrator.submit_writing(ESSAY)

    loaded = orchestrator.get_report("writing", report.id)

    assert loaded.task_type == report.task_type
    assert loaded.band_score == report.band_score
    assert loaded.to_dict() == report.to_dict()
    assert db.session.get(WritingSubmission, report.id).content == ESSAY["content"].strip()


def test_persistence_failure_leaves_no_record(orchestrator, provider):
    provider.reply_json(WRITING_REPLY)
    orchestrator.store = SubmissionStore(_FailingDatabase())

    with pytest.raises(PersistenceFailure):
        orchestrator.submit_writing(ESSAY)

    assert WritingSubmission.query.count() == 0


# ---------------------------------------------------------------------------
# Feedback refresh
# ---------------------------------------------------------------------------

def test_refresh_replaces_fallback_feedback(orchestrator, provider):
    provider.reply_status(503)
    first = orchestrator.submit_writing(ESSAY)
    assert first.is_fallback

    provider.replies.clear()
    provider.reply_json(WRITING_REPLY)
    refreshed = orchestrator.refresh_feedback("writing", first.id)

    assert refreshed.id == first.id
    assert refreshed.status == STATUS_SCORED
    assert refreshed.band_score == 7.0
    stored = db.session.get(WritingSubmission, first.id)
    assert stored.status == STATUS_SCORED
    assert stored.coherence_cohesion == 6.5


def test_refresh_keeps_fallback_when_provider_still_down(orchestrator, provider):
    provider.reply_status(503)
    first = orchestrator.submit_speaking(RECORDING)

    refreshed = orchestrator.refresh_feedback("speaking", first.id)

    assert refreshed.status == STATUS_FALLBACK
    assert refreshed.to_dict() == first.to_dict()


def test_refresh_of_scored_record_does_not_call_provider(orchestrator, provider):
    provider.reply_json(WRITING_REPLY)
    first = orchestrator.submit_writing(ESSAY)

    orchestrator.refresh_feedback("writing", first.id)

    assert len(provider.calls) == 1


def test_refresh_unknown_record(orchestrator):
    with pytest.raises(RecordNotFound):
        orchestrator.refresh_feedback("writing", 12345)
    with pytest.raises(InvalidInput):
        orchestrator.refresh_feedback("reading", 1)


def test_illegal_state_transition_is_rejected(app):
    progress = SubmissionProgress("reading")
    progress.advance("scoring")
    with pytest.raises(RuntimeError):
        progress.advance("fallback_scored")
