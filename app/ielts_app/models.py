"""SQLAlchemy database models for the IELTS practice app."""
from datetime import datetime, timezone
import sqlite3

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

db = SQLAlchemy()


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite connections for better concurrency."""
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.execute("PRAGMA busy_timeout=15000;")
        cursor.close()


def utcnow():
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class TestSession(db.Model):
    """A single sitting of one practice test."""
    __tablename__ = 'test_sessions'
    __test__ = False  # not a pytest test class

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    test_type = db.Column(db.String(20), nullable=False)  # writing/speaking/reading/listening
    status = db.Column(db.String(20), nullable=False, default='in_progress')
    started_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f'<TestSession id={self.id} type={self.test_type}>'

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'test_type': self.test_type,
            'status': self.status,
            'started_at': _iso(self.started_at),
            'completed_at': _iso(self.completed_at),
        }


class WritingSubmission(db.Model):
    """Essay submission together with its band scores and feedback."""
    __tablename__ = 'writing_submissions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey('test_sessions.id', ondelete='SET NULL'), nullable=True)

    task_type = db.Column(db.String(20), nullable=False)  # writing_task1 / writing_task2
    prompt = db.Column(db.Text, nullable=False)
    content = db.Column(db.Text, nullable=False)
    word_count = db.Column(db.Integer, nullable=False, default=0)
    submission_type = db.Column(db.String(20), nullable=True)  # typed / uploaded
    human_feedback_requested = db.Column(db.Boolean, default=False, nullable=False)

    # Band scores (1.0-9.0)
    band_score = db.Column(db.Float, nullable=False)
    task_response = db.Column(db.Float, nullable=False)
    coherence_cohesion = db.Column(db.Float, nullable=False)
    lexical_resource = db.Column(db.Float, nullable=False)
    grammatical_range = db.Column(db.Float, nullable=False)

    # {strengths, improvements, suggestions, detailed_feedback}
    ai_feedback = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(20), nullable=False)  # scored / fallback_scored

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<WritingSubmission id={self.id} band={self.band_score}>'

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'session_id': self.session_id,
            'task_type': self.task_type,
            'prompt': self.prompt,
            'content': self.content,
            'word_count': self.word_count,
            'submission_type': self.submission_type,
            'human_feedback_requested': self.human_feedback_requested,
            'band_score': self.band_score,
            'task_response': self.task_response,
            'coherence_cohesion': self.coherence_cohesion,
            'lexical_resource': self.lexical_resource,
            'grammatical_range': self.grammatical_range,
            'ai_feedback': self.ai_feedback,
            'status': self.status,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class SpeakingRecording(db.Model):
    """Speaking answer (transcript) together with its band scores and feedback."""
    __tablename__ = 'speaking_recordings'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey('test_sessions.id', ondelete='SET NULL'), nullable=True)

    task_type = db.Column(db.String(20), nullable=False)  # speaking_part1/2/3
    part_number = db.Column(db.Integer, nullable=False)
    question = db.Column(db.Text, nullable=False)
    content = db.Column(db.Text, nullable=False)  # transcript
    duration = db.Column(db.Integer, nullable=False, default=0)  # seconds
    audio_url = db.Column(db.String(500), nullable=True)

    band_score = db.Column(db.Float, nullable=False)
    fluency_coherence = db.Column(db.Float, nullable=False)
    pronunciation = db.Column(db.Float, nullable=False)
    lexical_resource = db.Column(db.Float, nullable=False)
    grammatical_range = db.Column(db.Float, nullable=False)

    ai_feedback = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(20), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<SpeakingRecording id={self.id} part={self.part_number} band={self.band_score}>'

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'session_id': self.session_id,
            'task_type': self.task_type,
            'part_number': self.part_number,
            'question': self.question,
            'content': self.content,
            'duration': self.duration,
            'audio_url': self.audio_url,
            'band_score': self.band_score,
            'fluency_coherence': self.fluency_coherence,
            'pronunciation': self.pronunciation,
            'lexical_resource': self.lexical_resource,
            'grammatical_range': self.grammatical_range,
            'ai_feedback': self.ai_feedback,
            'status': self.status,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class _ObjectiveResponseMixin:
    """Columns shared by reading and listening answer sheets."""

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    session_id = db.Column(db.Integer, nullable=True)
    material_id = db.Column(db.String(64), nullable=True)  # passage / listening test id

    task_type = db.Column(db.String(20), nullable=False)
    answers = db.Column(db.JSON, nullable=False)  # {question_id: answer}
    correct_answers = db.Column(db.JSON, nullable=False)
    score = db.Column(db.Integer, nullable=False)
    total_questions = db.Column(db.Integer, nullable=False)
    band_score = db.Column(db.Float, nullable=False)
    time_taken = db.Column(db.Integer, nullable=True)  # seconds

    ai_feedback = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(20), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'session_id': self.session_id,
            'material_id': self.material_id,
            'task_type': self.task_type,
            'answers': self.answers,
            'correct_answers': self.correct_answers,
            'score': self.score,
            'total_questions': self.total_questions,
            'band_score': self.band_score,
            'time_taken': self.time_taken,
            'ai_feedback': self.ai_feedback,
            'status': self.status,
            'created_at': _iso(self.created_at),
        }


class ReadingResponse(_ObjectiveResponseMixin, db.Model):
    """Submitted answer sheet for a reading passage."""
    __tablename__ = 'reading_responses'

    def __repr__(self):
        return f'<ReadingResponse id={self.id} score={self.score}/{self.total_questions}>'


class ListeningResponse(_ObjectiveResponseMixin, db.Model):
    """Submitted answer sheet for a listening test."""
    __tablename__ = 'listening_responses'

    def __repr__(self):
        return f'<ListeningResponse id={self.id} score={self.score}/{self.total_questions}>'


class ProgressProfile(db.Model):
    """Per-user practice counters."""
    __tablename__ = 'progress_profiles'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), unique=True, index=True, nullable=False)
    tests_completed = db.Column(db.Integer, default=0, nullable=False)
    total_study_hours = db.Column(db.Float, default=0.0, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<ProgressProfile user={self.user_id} tests={self.tests_completed}>'

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'tests_completed': self.tests_completed,
            'total_study_hours': self.total_study_hours,
            'updated_at': _iso(self.updated_at),
        }


# Table name -> model, used by the submission store.
MODELS_BY_TABLE = {
    model.__tablename__: model
    for model in (
        TestSession,
        WritingSubmission,
        SpeakingRecording,
        ReadingResponse,
        ListeningResponse,
        ProgressProfile,
    )
}
