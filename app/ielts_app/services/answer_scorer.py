"""Exact-match scoring for reading and listening answer sheets."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from .errors import InvalidInput


def normalize_answer(value: Any) -> str:
    """Trim and lowercase an answer for comparison; ``None`` becomes ''."""
    if value is None:
        return ''
    return str(value).strip().lower()


def is_correct(submitted: Any, correct: Any) -> bool:
    submitted_text = normalize_answer(submitted)
    if not submitted_text:
        return False
    return submitted_text == normalize_answer(correct)


def score_answers(answers: Mapping[str, Any], correct_answers: Mapping[str, Any]) -> int:
    """Count the questions in ``correct_answers`` answered correctly.

    Keys missing from ``answers`` count as wrong; keys present only in
    ``answers`` are ignored.
    """
    answers = answers or {}
    correct_count = 0
    for question_id, correct in (correct_answers or {}).items():
        if is_correct(answers.get(question_id), correct):
            correct_count += 1
    return correct_count


def coerce_answer_set(
    value: Any,
    label: str = 'answers',
    allow_blank: bool = True,
) -> Dict[str, Optional[str]]:
    """Validate an answer mapping and normalise its keys and values to strings.

    Unanswered questions may be sent as ``None``. Nested structures and
    booleans are rejected. With ``allow_blank=False`` (answer keys) every
    value must be non-blank, since a blank submission never scores.
    """
    if not isinstance(value, Mapping):
        raise InvalidInput(f'{label} must be an object mapping question ids to answers')

    coerced: Dict[str, Optional[str]] = {}
    for key, answer in value.items():
        if isinstance(key, bool) or not isinstance(key, (str, int)):
            raise InvalidInput(f'{label} has an invalid question id: {key!r}')
        if not allow_blank and not normalize_answer(answer):
            raise InvalidInput(f'{label}[{key!r}] must not be blank')
        if answer is None:
            coerced[str(key)] = None
            continue
        if isinstance(answer, bool) or not isinstance(answer, (str, int, float)):
            raise InvalidInput(f'{label}[{key!r}] must be a string answer')
        coerced[str(key)] = str(answer)
    return coerced
