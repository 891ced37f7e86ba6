"""
IELTS examiner feedback via an external language model.
Builds writing/speaking prompts, sends them through the chat client and turns
the reply into typed, clamped feedback payloads.
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from flask import current_app

from ..config import ProviderSettings
from .band_converter import clamp_band
from .chat_client import ChatCompletionClient
from .errors import InvalidInput, MalformedProviderResponse
from .feedback_types import SpeakingFeedback, WritingFeedback

WRITING_TASK_TYPES = ('task1', 'task2')
SPEAKING_PARTS = (1, 2, 3)

_LIST_FIELDS = ('strengths', 'improvements', 'suggestions')


def count_words(text: str) -> int:
    return len([word for word in re.split(r'\s+', text or '') if word])


def _require_text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f'{key} is required')
    return value.strip()


@dataclass(frozen=True)
class WritingTaskContext:
    task_type: str  # task1 / task2
    prompt: str
    content: str
    word_count: int

    @property
    def submission_task_type(self) -> str:
        return f'writing_{self.task_type}'

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> 'WritingTaskContext':
        if not isinstance(payload, Mapping):
            raise InvalidInput('writing submission must be a JSON object')
        task_type = str(payload.get('task_type') or '').strip().lower()
        if task_type.startswith('writing_'):
            task_type = task_type[len('writing_'):]
        if task_type not in WRITING_TASK_TYPES:
            raise InvalidInput(f'task_type must be one of {", ".join(WRITING_TASK_TYPES)}')
        content = _require_text(payload, 'content')
        return cls(
            task_type=task_type,
            prompt=_require_text(payload, 'prompt'),
            content=content,
            word_count=count_words(content),
        )


@dataclass(frozen=True)
class SpeakingTaskContext:
    part_number: int
    question: str
    transcript: str
    duration: int  # seconds

    @property
    def submission_task_type(self) -> str:
        return f'speaking_part{self.part_number}'

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> 'SpeakingTaskContext':
        if not isinstance(payload, Mapping):
            raise InvalidInput('speaking submission must be a JSON object')
        try:
            part_number = int(payload.get('part_number'))
        except (TypeError, ValueError):
            raise InvalidInput('part_number must be 1, 2 or 3') from None
        if part_number not in SPEAKING_PARTS:
            raise InvalidInput('part_number must be 1, 2 or 3')
        try:
            duration = int(payload.get('duration') or 0)
        except (TypeError, ValueError):
            raise InvalidInput('duration must be a whole number of seconds') from None
        if duration < 0:
            raise InvalidInput('duration must not be negative')
        return cls(
            part_number=part_number,
            question=_require_text(payload, 'question'),
            transcript=_require_text(payload, 'transcript'),
            duration=duration,
        )


WRITING_SYSTEM_PROMPT = """You are an expert IELTS examiner with 15+ years of experience. You must provide accurate, detailed feedback following official IELTS band descriptors.

For Task 1: Focus on task achievement, data accuracy, overview, and appropriate language.
For Task 2: Focus on task response, position clarity, idea development, and argumentation.

Always provide scores as numbers (e.g., 6.5, 7.0) and detailed, actionable feedback. Respond with JSON only."""

SPEAKING_SYSTEM_PROMPT = """You are an expert IELTS speaking examiner. Analyze speaking responses based on official IELTS criteria:
- Fluency and Coherence
- Pronunciation
- Lexical Resource
- Grammatical Range and Accuracy

Consider the part number context:
Part 1: Personal questions, 4-5 minutes
Part 2: Individual long turn, 3-4 minutes
Part 3: Discussion, 4-5 minutes

Provide accurate band scores and specific, actionable feedback. Respond with JSON only."""


class FeedbackGateway:
    """Request IELTS band feedback for writing and speaking submissions."""

    def __init__(self, client: ChatCompletionClient, settings: ProviderSettings):
        self.client = client
        self.settings = settings

    def writing_feedback(self, context: WritingTaskContext) -> WritingFeedback:
        user_prompt = self._build_writing_prompt(context)
        raw = self.client.complete_json(
            WRITING_SYSTEM_PROMPT,
            user_prompt,
            max_tokens=self.settings.writing_max_tokens,
        )
        scores, lists, details = self._normalize_feedback(raw, WritingFeedback.criteria)
        return WritingFeedback(detailed_feedback=details, **scores, **lists)

    def speaking_feedback(self, context: SpeakingTaskContext) -> SpeakingFeedback:
        user_prompt = self._build_speaking_prompt(context)
        raw = self.client.complete_json(
            SPEAKING_SYSTEM_PROMPT,
            user_prompt,
            max_tokens=self.settings.speaking_max_tokens,
        )
        scores, lists, details = self._normalize_feedback(raw, SpeakingFeedback.criteria)
        return SpeakingFeedback(detailed_feedback=details, **scores, **lists)

    @staticmethod
    def _response_schema(criteria: Tuple[str, ...]) -> str:
        schema: Dict[str, Any] = {'band_score': 'number'}
        schema.update({name: 'number' for name in criteria})
        schema['detailed_feedback'] = {name: 'specific feedback' for name in criteria}
        schema['strengths'] = ['strength1', 'strength2', 'strength3']
        schema['improvements'] = ['improvement1', 'improvement2', 'improvement3']
        schema['suggestions'] = ['suggestion1', 'suggestion2', 'suggestion3']
        return json.dumps(schema, indent=2)

    def _build_writing_prompt(self, context: WritingTaskContext) -> str:
        return f"""Analyze this IELTS {context.task_type.upper()} response:

TASK PROMPT: {context.prompt}

STUDENT RESPONSE: {context.content}

WORD COUNT: {context.word_count}

Provide detailed analysis with:
1. Overall band score (1-9, use .5 increments)
2. Individual criterion scores:
   - Task Achievement/Response (1-9)
   - Coherence and Cohesion (1-9)
   - Lexical Resource (1-9)
   - Grammatical Range and Accuracy (1-9)
3. Specific feedback for each criterion
4. 3-4 key strengths
5. 3-4 areas for improvement
6. 3-4 actionable suggestions

Format as JSON:
{self._response_schema(WritingFeedback.criteria)}"""

    def _build_speaking_prompt(self, context: SpeakingTaskContext) -> str:
        return f"""Analyze this IELTS Speaking Part {context.part_number} response:

QUESTION: {context.question}

TRANSCRIPT: {context.transcript}

DURATION: {context.duration} seconds

Provide detailed analysis with:
1. Overall band score (1-9, use .5 increments)
2. Individual criterion scores:
   - Fluency and Coherence (1-9)
   - Pronunciation (1-9)
   - Lexical Resource (1-9)
   - Grammatical Range and Accuracy (1-9)
3. Specific feedback for each criterion
4. 3-4 key strengths
5. 3-4 areas for improvement
6. 3-4 actionable suggestions

Format as JSON:
{self._response_schema(SpeakingFeedback.criteria)}"""

    def _normalize_feedback(
        self,
        raw_feedback: Dict[str, Any],
        criteria: Tuple[str, ...],
    ) -> Tuple[Dict[str, float], Dict[str, List[str]], Dict[str, str]]:
        """Validate the provider JSON and clamp every score to [1.0, 9.0]."""
        data = self._flatten_feedback(raw_feedback)

        scores: Dict[str, float] = {}
        for name in ('band_score',) + criteria:
            value = self._safe_float(data.get(name))
            if value is None:
                raise MalformedProviderResponse(f'Provider feedback is missing a numeric {name}')
            clamped = clamp_band(value)
            if clamped != value:
                current_app.logger.info("Clamped provider %s from %s to %s", name, value, clamped)
            scores[name] = clamped

        lists: Dict[str, List[str]] = {}
        for name in _LIST_FIELDS:
            items = self._normalize_list_field(data.get(name), limit=6, max_len=300)
            if not items:
                raise MalformedProviderResponse(f'Provider feedback has no {name}')
            lists[name] = items

        details: Dict[str, str] = {}
        detailed = data.get('detailed_feedback')
        if isinstance(detailed, dict):
            for key, value in detailed.items():
                text = self._normalize_text_field(value)
                if text:
                    details[str(key)] = text
        return scores, lists, details

    @staticmethod
    def _flatten_feedback(payload: Dict[str, Any]) -> Dict[str, Any]:
        """Promote scores nested under ``scores``/``feedback`` to the top level."""
        flattened: Dict[str, Any] = dict(payload)
        for container_key in ('scores', 'criteria', 'feedback'):
            container = payload.get(container_key)
            if isinstance(container, dict):
                for sub_key, sub_value in container.items():
                    if flattened.get(sub_key) in (None, '', []):
                        flattened[sub_key] = sub_value
        return flattened

    @staticmethod
    def _safe_float(value: Any) -> Optional[float]:
        """Coerce a value to float, returning None for anything non-numeric."""
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            result = float(value)
        else:
            try:
                result = float(str(value).strip())
            except (TypeError, ValueError):
                return None
        if math.isnan(result) or math.isinf(result):
            return None
        return result

    def _normalize_text_field(self, value: Any) -> Optional[str]:
        """Normalize free-text fields into concise strings."""
        if value is None:
            return None
        if isinstance(value, str):
            text = value.strip()
            return text or None
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, dict):
            for key in ('text', 'summary', 'value', 'message', 'content'):
                candidate = self._normalize_text_field(value.get(key))
                if candidate:
                    return candidate
        return None

    def _normalize_list_field(self, value: Any, limit: Optional[int] = None, max_len: Optional[int] = None) -> List[str]:
        """Normalize list-like feedback fields into bounded lists of concise strings."""
        if isinstance(value, list):
            iterable = value
        elif isinstance(value, str):
            iterable = [seg.strip() for seg in re.split(r'[\n;]+', value) if seg.strip()]
        else:
            iterable = []

        items: List[str] = []
        for entry in iterable:
            text = self._normalize_text_field(entry)
            if not text:
                continue
            if max_len:
                text = text[:max_len]
            items.append(text)

        if limit is not None:
            items = items[:limit]
        return items
