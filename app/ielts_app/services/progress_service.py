"""Per-user practice counters (tests completed, study hours)."""
from __future__ import annotations

import math
from typing import Any, Dict

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..models import ProgressProfile
from .errors import InvalidInput, PersistenceFailure
from .submission_store import SubmissionStore

TABLE = 'progress_profiles'


class ProgressService:
    def __init__(self, store: SubmissionStore):
        self.store = store

    def _profile(self, user_id: str) -> Dict[str, Any]:
        profile = self.store.select(TABLE, {'user_id': user_id})
        if profile is not None:
            return profile
        try:
            return self.store.insert(TABLE, {
                'user_id': user_id,
                'tests_completed': 0,
                'total_study_hours': 0.0,
            })
        except PersistenceFailure as exc:
            # A concurrent first request created the profile between select and insert.
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            profile = self.store.select(TABLE, {'user_id': user_id})
            if profile is None:
                raise
            current_app.logger.info("Progress profile for %s created concurrently; reusing it", user_id)
            return profile

    def get_progress(self, user_id: str) -> Dict[str, Any]:
        return self._profile(user_id)

    def increment_test_completion(self, user_id: str) -> Dict[str, Any]:
        profile = self._profile(user_id)
        # Column expressions keep the increment atomic in the database.
        self.store.update(TABLE, profile['id'], {
            'tests_completed': ProgressProfile.tests_completed + 1,
        })
        return self.store.select(TABLE, {'id': profile['id']})

    def add_study_time(self, user_id: str, minutes: Any) -> Dict[str, Any]:
        if isinstance(minutes, bool):
            raise InvalidInput('minutes must be a number')
        try:
            minutes = float(minutes)
        except (TypeError, ValueError):
            raise InvalidInput('minutes must be a number') from None
        if not math.isfinite(minutes) or minutes < 0:
            raise InvalidInput('minutes must be a non-negative number')

        profile = self._profile(user_id)
        self.store.update(TABLE, profile['id'], {
            'total_study_hours': ProgressProfile.total_study_hours + minutes / 60,
        })
        return self.store.select(TABLE, {'id': profile['id']})
