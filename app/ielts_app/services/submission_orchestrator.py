"""
Submission handling for all four IELTS skills.

Every submission moves through a small state machine:

    created -> scoring -> scored                                  (reading, listening)
    created -> awaiting_feedback -> scored | fallback_scored      (writing, speaking)

The score report is assembled completely before anything is written. The
submission plus its report are stored as a single record, in the same
transaction that marks the owning test session completed. Feedback provider
failures are recovered here and nowhere else: the caller always receives a
displayable band score.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from flask import current_app

from ..config import ProviderSettings
from ..models import utcnow
from .answer_scorer import coerce_answer_set, score_answers
from .band_converter import band_for_score
from .errors import (
    InvalidInput,
    MalformedProviderResponse,
    ProviderUnavailable,
    RecordNotFound,
)
from .feedback_gateway import FeedbackGateway, SpeakingTaskContext, WritingTaskContext
from .feedback_types import (
    STATUS_FALLBACK,
    STATUS_SCORED,
    FeedbackPayload,
    ObjectiveFeedback,
    ScoreReport,
    SpeakingFeedback,
    WritingFeedback,
    fallback_speaking_feedback,
    fallback_writing_feedback,
    objective_feedback,
)
from .practice_materials import correct_answers_for, find_material
from .submission_store import SubmissionStore

CREATED = 'created'
SCORING = 'scoring'
AWAITING_FEEDBACK = 'awaiting_feedback'
SCORED = STATUS_SCORED
FALLBACK_SCORED = STATUS_FALLBACK

_TRANSITIONS = {
    CREATED: {SCORING, AWAITING_FEEDBACK},
    SCORING: {SCORED},
    AWAITING_FEEDBACK: {SCORED, FALLBACK_SCORED},
}

TABLES = {
    'writing': 'writing_submissions',
    'speaking': 'speaking_recordings',
    'reading': 'reading_responses',
    'listening': 'listening_responses',
}
TEST_TYPES = tuple(TABLES)
OBJECTIVE_SKILLS = ('reading', 'listening')

TaskContext = Union[WritingTaskContext, SpeakingTaskContext]


class SubmissionProgress:
    """Tracks the state of one submission while it is being scored."""

    def __init__(self, task_type: str):
        self.task_type = task_type
        self.state = CREATED

    def advance(self, new_state: str) -> None:
        if new_state not in _TRANSITIONS.get(self.state, ()):
            raise RuntimeError(f'Illegal submission transition {self.state} -> {new_state}')
        current_app.logger.debug("Submission %s: %s -> %s", self.task_type, self.state, new_state)
        self.state = new_state


def _table_for(kind: str) -> str:
    try:
        return TABLES[kind]
    except KeyError:
        raise InvalidInput(f'Unknown test type: {kind}') from None


def _optional_int(value: Any, name: str) -> Optional[int]:
    if value is None or value == '':
        return None
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise InvalidInput(f'{name} must be an integer')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f'{name} must be an integer') from None


class SubmissionOrchestrator:
    """Score submissions, apply the fallback policy and persist the result."""

    def __init__(self, gateway: FeedbackGateway, store: SubmissionStore, settings: ProviderSettings):
        self.gateway = gateway
        self.store = store
        self.settings = settings

    # ------------------------------------------------------------------
    # Test sessions
    # ------------------------------------------------------------------

    def create_test_session(self, test_type: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        if test_type not in TEST_TYPES:
            raise InvalidInput(f'test_type must be one of {", ".join(TEST_TYPES)}')
        record = self.store.insert('test_sessions', {
            'user_id': user_id,
            'test_type': test_type,
            'status': 'in_progress',
        })
        return {'id': record['id'], 'test_type': test_type, 'status': record['status']}

    def _check_session(self, session_id: Optional[int]) -> None:
        if session_id is None:
            return
        if self.store.select('test_sessions', {'id': session_id}) is None:
            raise InvalidInput(f'Unknown test session: {session_id}')

    @staticmethod
    def _session_completion(session_id: Optional[int]) -> List[Tuple[str, int, Dict[str, Any]]]:
        """Session patch to store alongside the submission, if there is a session."""
        if session_id is None:
            return []
        return [('test_sessions', session_id, {'status': 'completed', 'completed_at': utcnow()})]

    # ------------------------------------------------------------------
    # Objective path (reading / listening)
    # ------------------------------------------------------------------

    def submit_objective(
        self,
        skill: str,
        answers: Any,
        correct_answers: Any = None,
        total_questions: Any = None,
        *,
        session_id: Any = None,
        material_id: Optional[str] = None,
        time_taken: Any = None,
        user_id: Optional[str] = None,
    ) -> ScoreReport:
        """Score an answer sheet against its key and store the result."""
        if skill not in OBJECTIVE_SKILLS:
            raise InvalidInput(f'{skill} is not an objective test type')

        answer_set = coerce_answer_set(answers, 'answers')
        if correct_answers is None:
            if not material_id:
                raise InvalidInput('correct_answers or material_id is required')
            try:
                material = find_material(skill, material_id)
            except RecordNotFound as exc:
                raise InvalidInput(str(exc)) from None
            correct_set = correct_answers_for(material, skill)
        else:
            correct_set = coerce_answer_set(correct_answers, 'correct_answers', allow_blank=False)
        if not correct_set:
            raise InvalidInput('correct_answers must not be empty')

        total = len(correct_set) if total_questions is None else _optional_int(total_questions, 'total_questions')
        if total is not None and 0 < total < len(correct_set):
            raise InvalidInput(
                f'total_questions ({total}) is smaller than the number of answer keys ({len(correct_set)})'
            )
        session_id = _optional_int(session_id, 'session_id')
        time_taken = _optional_int(time_taken, 'time_taken')
        self._check_session(session_id)

        progress = SubmissionProgress(skill)
        progress.advance(SCORING)
        score = score_answers(answer_set, correct_set)
        band = band_for_score(score, total)
        feedback = objective_feedback(skill, band)
        progress.advance(SCORED)

        record = self.store.insert(TABLES[skill], {
            'user_id': user_id,
            'session_id': session_id,
            'material_id': material_id,
            'task_type': skill,
            'answers': answer_set,
            'correct_answers': correct_set,
            'score': score,
            'total_questions': total,
            'band_score': band,
            'time_taken': time_taken,
            'ai_feedback': feedback.feedback_dict(),
            'status': progress.state,
        }, also_update=self._session_completion(session_id))

        return ScoreReport(
            id=record['id'],
            task_type=skill,
            band_score=band,
            feedback=feedback,
            status=progress.state,
            score=score,
            total_questions=total,
        )

    # ------------------------------------------------------------------
    # Subjective path (writing / speaking)
    # ------------------------------------------------------------------

    def submit_writing(self, payload: Mapping[str, Any], user_id: Optional[str] = None) -> ScoreReport:
        context = WritingTaskContext.from_payload(payload)
        return self.submit_subjective(
            context,
            user_id=user_id,
            session_id=payload.get('session_id'),
            extra={
                'submission_type': payload.get('submission_type'),
                'human_feedback_requested': bool(payload.get('human_feedback_requested', False)),
            },
        )

    def submit_speaking(self, payload: Mapping[str, Any], user_id: Optional[str] = None) -> ScoreReport:
        context = SpeakingTaskContext.from_payload(payload)
        return self.submit_subjective(
            context,
            user_id=user_id,
            session_id=payload.get('session_id'),
            extra={'audio_url': payload.get('audio_url')},
        )

    def submit_subjective(
        self,
        task_context: TaskContext,
        *,
        user_id: Optional[str] = None,
        session_id: Any = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> ScoreReport:
        """Request provider feedback (or fall back) and store the submission."""
        kind, record = self._context_record(task_context)
        session_id = _optional_int(session_id, 'session_id')
        self._check_session(session_id)

        progress = SubmissionProgress(task_context.submission_task_type)
        progress.advance(AWAITING_FEEDBACK)
        feedback, status = self._request_feedback(task_context)
        progress.advance(status)

        record.update(extra or {})
        record.update({
            'user_id': user_id,
            'session_id': session_id,
            'band_score': feedback.band_score,
            'ai_feedback': feedback.feedback_dict(),
            'status': progress.state,
        })
        record.update(feedback.criterion_scores())
        stored = self.store.insert(TABLES[kind], record, also_update=self._session_completion(session_id))

        return self._subjective_report(stored['id'], task_context, feedback, progress.state)

    @staticmethod
    def _context_record(task_context: TaskContext) -> Tuple[str, Dict[str, Any]]:
        if isinstance(task_context, WritingTaskContext):
            return 'writing', {
                'task_type': task_context.submission_task_type,
                'prompt': task_context.prompt,
                'content': task_context.content,
                'word_count': task_context.word_count,
            }
        if isinstance(task_context, SpeakingTaskContext):
            return 'speaking', {
                'task_type': task_context.submission_task_type,
                'part_number': task_context.part_number,
                'question': task_context.question,
                'content': task_context.transcript,
                'duration': task_context.duration,
            }
        raise InvalidInput(f'Unsupported task context: {type(task_context).__name__}')

    @staticmethod
    def _subjective_report(record_id, task_context: TaskContext, feedback: FeedbackPayload, status: str) -> ScoreReport:
        return ScoreReport(
            id=record_id,
            task_type=task_context.submission_task_type,
            band_score=feedback.band_score,
            feedback=feedback,
            status=status,
            word_count=getattr(task_context, 'word_count', None),
        )

    def _request_feedback(self, task_context: TaskContext) -> Tuple[FeedbackPayload, str]:
        """Call the gateway under the retry policy; substitute fallback content on failure."""
        if isinstance(task_context, WritingTaskContext):
            request: Callable[[], FeedbackPayload] = lambda: self.gateway.writing_feedback(task_context)
            fallback = fallback_writing_feedback
        else:
            request = lambda: self.gateway.speaking_feedback(task_context)
            fallback = fallback_speaking_feedback

        attempts = max(1, self.settings.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return request(), SCORED
            except ProviderUnavailable as exc:
                if attempt < attempts:
                    current_app.logger.warning(
                        "Feedback provider unavailable (%s). Retrying (attempt %s/%s).",
                        exc,
                        attempt,
                        attempts,
                    )
                    continue
                current_app.logger.warning(
                    "Feedback provider unavailable for %s after %s attempt(s): %s. Using fallback feedback.",
                    task_context.submission_task_type,
                    attempts,
                    exc,
                )
            except MalformedProviderResponse as exc:
                current_app.logger.warning(
                    "Malformed feedback for %s: %s. Using fallback feedback.",
                    task_context.submission_task_type,
                    exc,
                )
                break
        return fallback(), FALLBACK_SCORED

    # ------------------------------------------------------------------
    # Stored results
    # ------------------------------------------------------------------

    def _load(self, kind: str, record_id: int) -> Dict[str, Any]:
        record = self.store.select(_table_for(kind), {'id': record_id})
        if record is None:
            raise RecordNotFound(f'No {kind} submission with id {record_id}')
        return record

    def get_report(self, kind: str, record_id: int) -> ScoreReport:
        return self._report_from_record(kind, self._load(kind, record_id))

    def refresh_feedback(self, kind: str, record_id: int) -> ScoreReport:
        """Retry provider feedback for a stored fallback-scored submission.

        On success the record is updated in place. A record that already has
        provider feedback, or a provider that is still failing, leaves the
        stored report unchanged.
        """
        if kind not in ('writing', 'speaking'):
            raise InvalidInput('Only writing and speaking feedback can be refreshed')
        record = self._load(kind, record_id)
        if record['status'] != FALLBACK_SCORED:
            return self._report_from_record(kind, record)

        if kind == 'writing':
            context: TaskContext = WritingTaskContext(
                task_type=record['task_type'].replace('writing_', '', 1),
                prompt=record['prompt'],
                content=record['content'],
                word_count=record['word_count'],
            )
        else:
            context = SpeakingTaskContext(
                part_number=record['part_number'],
                question=record['question'],
                transcript=record['content'],
                duration=record['duration'],
            )

        feedback, status = self._request_feedback(context)
        if status == FALLBACK_SCORED:
            current_app.logger.info("Feedback refresh for %s id=%s still using fallback", kind, record_id)
            return self._report_from_record(kind, record)

        patch = {
            'band_score': feedback.band_score,
            'ai_feedback': feedback.feedback_dict(),
            'status': status,
        }
        patch.update(feedback.criterion_scores())
        self.store.update(TABLES[kind], record_id, patch)
        return self._subjective_report(record_id, context, feedback, status)

    @staticmethod
    def _report_from_record(kind: str, record: Mapping[str, Any]) -> ScoreReport:
        ai_feedback = record.get('ai_feedback') or {}
        lists = {
            'strengths': list(ai_feedback.get('strengths') or []),
            'improvements': list(ai_feedback.get('improvements') or []),
            'suggestions': list(ai_feedback.get('suggestions') or []),
        }
        if kind == 'writing':
            feedback: FeedbackPayload = WritingFeedback(
                band_score=record['band_score'],
                detailed_feedback=dict(ai_feedback.get('detailed_feedback') or {}),
                **{name: record[name] for name in WritingFeedback.criteria},
                **lists,
            )
        elif kind == 'speaking':
            feedback = SpeakingFeedback(
                band_score=record['band_score'],
                detailed_feedback=dict(ai_feedback.get('detailed_feedback') or {}),
                **{name: record[name] for name in SpeakingFeedback.criteria},
                **lists,
            )
        else:
            feedback = ObjectiveFeedback(band_score=record['band_score'], **lists)

        return ScoreReport(
            id=record['id'],
            task_type=record['task_type'],
            band_score=record['band_score'],
            feedback=feedback,
            status=record['status'],
            score=record.get('score') or 0,
            total_questions=record.get('total_questions') or 0,
            word_count=record.get('word_count'),
        )
