"""Typed feedback payloads and the score report returned to callers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

WRITING_CRITERIA: Tuple[str, ...] = (
    'task_response',
    'coherence_cohesion',
    'lexical_resource',
    'grammatical_range',
)
SPEAKING_CRITERIA: Tuple[str, ...] = (
    'fluency_coherence',
    'pronunciation',
    'lexical_resource',
    'grammatical_range',
)

STATUS_SCORED = 'scored'
STATUS_FALLBACK = 'fallback_scored'

NEUTRAL_BAND = 6.5


@dataclass
class _FeedbackLists:
    strengths: List[str]
    improvements: List[str]
    suggestions: List[str]

    def feedback_dict(self) -> Dict[str, Any]:
        return {
            'strengths': list(self.strengths),
            'improvements': list(self.improvements),
            'suggestions': list(self.suggestions),
        }


@dataclass
class WritingFeedback(_FeedbackLists):
    category: ClassVar[str] = 'writing'
    criteria: ClassVar[Tuple[str, ...]] = WRITING_CRITERIA

    band_score: float = NEUTRAL_BAND
    task_response: float = NEUTRAL_BAND
    coherence_cohesion: float = NEUTRAL_BAND
    lexical_resource: float = NEUTRAL_BAND
    grammatical_range: float = NEUTRAL_BAND
    detailed_feedback: Dict[str, str] = field(default_factory=dict)

    def criterion_scores(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in self.criteria}

    def feedback_dict(self) -> Dict[str, Any]:
        payload = super().feedback_dict()
        if self.detailed_feedback:
            payload['detailed_feedback'] = dict(self.detailed_feedback)
        return payload


@dataclass
class SpeakingFeedback(_FeedbackLists):
    category: ClassVar[str] = 'speaking'
    criteria: ClassVar[Tuple[str, ...]] = SPEAKING_CRITERIA

    band_score: float = NEUTRAL_BAND
    fluency_coherence: float = NEUTRAL_BAND
    pronunciation: float = NEUTRAL_BAND
    lexical_resource: float = NEUTRAL_BAND
    grammatical_range: float = NEUTRAL_BAND
    detailed_feedback: Dict[str, str] = field(default_factory=dict)

    def criterion_scores(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in self.criteria}

    def feedback_dict(self) -> Dict[str, Any]:
        payload = super().feedback_dict()
        if self.detailed_feedback:
            payload['detailed_feedback'] = dict(self.detailed_feedback)
        return payload


@dataclass
class ObjectiveFeedback(_FeedbackLists):
    """Skill-level advice attached to reading and listening results."""
    category: ClassVar[str] = 'objective'
    criteria: ClassVar[Tuple[str, ...]] = ()

    band_score: float = 0.0

    def criterion_scores(self) -> Dict[str, float]:
        return {}


FeedbackPayload = Union[WritingFeedback, SpeakingFeedback, ObjectiveFeedback]


def fallback_writing_feedback() -> WritingFeedback:
    return WritingFeedback(
        strengths=['Good task achievement', 'Clear structure'],
        improvements=['Expand vocabulary', 'Use more complex sentences'],
        suggestions=['Practice conditionals', 'Use more linking words'],
    )


def fallback_speaking_feedback() -> SpeakingFeedback:
    return SpeakingFeedback(
        strengths=['Good fluency', 'Clear pronunciation'],
        improvements=['Expand vocabulary', 'Use more complex grammar'],
        suggestions=['Practice daily', 'Record yourself and listen back'],
    )


def objective_feedback(skill: str, band_score: float) -> ObjectiveFeedback:
    if skill == 'listening':
        return ObjectiveFeedback(
            band_score=band_score,
            strengths=['Good attention to detail', 'Effective note-taking skills'],
            improvements=['Practice with different accents', 'Work on spelling accuracy'],
            suggestions=['Listen to English podcasts daily', 'Practice dictation exercises'],
        )
    return ObjectiveFeedback(
        band_score=band_score,
        strengths=['Good comprehension of main ideas', 'Effective scanning for specific information'],
        improvements=['Work on time management', 'Practice identifying paraphrased information'],
        suggestions=['Read academic texts daily', 'Practice skimming techniques'],
    )


@dataclass
class ScoreReport:
    """Unified result of one submission, in the shape the UI renders."""

    id: Optional[int]
    task_type: str
    band_score: float
    feedback: FeedbackPayload
    status: str = STATUS_SCORED
    score: int = 0
    total_questions: int = 0
    word_count: Optional[int] = None

    @property
    def is_fallback(self) -> bool:
        return self.status == STATUS_FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'id': self.id,
            'task_type': self.task_type,
            'band_score': self.band_score,
            'score': self.score,
            'total_questions': self.total_questions,
            'status': self.status,
            'ai_feedback': self.feedback.feedback_dict(),
        }
        result.update(self.feedback.criterion_scores())
        if self.word_count is not None:
            result['word_count'] = self.word_count
        return result
