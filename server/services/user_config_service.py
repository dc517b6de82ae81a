"""
User Preferences Service

Manages per-user scheduling preferences: working hours per weekday and
the preferred focus block length. Users without a stored file get the
defaults (Monday-Friday 09:00-17:00, 1.5 hour focus blocks).
"""

import json
from pathlib import Path
from typing import Dict, Optional

from fastmcp.utilities.logging import get_logger
from pydantic import ValidationError

from config.settings import get_settings
from services.errors import DataUnavailable
from services.focus_models import FocusPreferences, WorkingHoursPolicy


class UserPreferencesService:
    """
    Service for managing per-user preferences.

    Preferences are read fresh on every call; nothing is cached between
    scheduling runs.
    """

    def __init__(self, data_dir: Optional[Path] = None, default_focus_hours: Optional[float] = None):
        """Initialize user preferences service."""
        self.logger = get_logger("UserPreferencesService")
        settings = get_settings()
        self.config_dir = Path(data_dir or settings.data_dir) / "user_configs"
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.default_focus_hours = default_focus_hours or settings.default_optimal_focus_hours

    def get_user_config_path(self, user_id: str) -> Path:
        """Get path to user's config file."""
        return self.config_dir / f"{user_id}.json"

    def get_user_config(self, user_id: str) -> Dict:
        """
        Get the raw stored configuration for a user.

        Raises:
            DataUnavailable: If the file exists but cannot be read
        """
        config_path = self.get_user_config_path(user_id)
        if not config_path.exists():
            return {}
        try:
            with open(config_path, 'r') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Error reading user config: {e}")
            raise DataUnavailable("user preferences", str(e)) from e

    def get_preferences(self, user_id: str) -> FocusPreferences:
        """
        Get scheduling preferences, filling gaps with defaults.

        Args:
            user_id: User identifier

        Returns:
            FocusPreferences for the user
        """
        config = self.get_user_config(user_id)
        try:
            return self._build(config)
        except ValidationError as e:
            self.logger.error(f"Invalid preferences stored for user {user_id}: {e}")
            raise DataUnavailable("user preferences", "stored preferences are invalid") from e

    def _build(self, config: Dict) -> FocusPreferences:
        hours = config.get('optimal_focus_time')
        return FocusPreferences(
            work_hours=config.get('work_hours') or WorkingHoursPolicy(),
            optimal_focus_time=self.default_focus_hours if hours is None else hours,
        )

    def _update(self, user_id: str, updates: Dict) -> FocusPreferences:
        config = self.get_user_config(user_id)
        config.update(updates)
        # Validate before anything reaches disk
        self._build(config)
        try:
            with open(self.get_user_config_path(user_id), 'w') as f:
                json.dump(config, f, indent=2)
        except OSError as e:
            self.logger.error(f"Error storing preferences for user {user_id}: {e}")
            raise DataUnavailable("user preferences", str(e)) from e
        return self.get_preferences(user_id)

    def update_work_hours(self, user_id: str, work_hours: Dict[str, Optional[Dict[str, str]]]) -> FocusPreferences:
        """
        Replace working hours.

        Args:
            user_id: User identifier
            work_hours: Weekday name -> {"start": "HH:MM", "end": "HH:MM"} or None

        Raises:
            ValidationError: If the hours are malformed
        """
        policy = WorkingHoursPolicy.model_validate(work_hours)
        self.logger.info(f"Updating work hours for user {user_id}")
        return self._update(user_id, {'work_hours': policy.model_dump(mode='json')})

    def update_optimal_focus_time(self, user_id: str, hours: float) -> FocusPreferences:
        """
        Set the preferred focus block length in hours.

        Raises:
            ValidationError: If hours is not positive
        """
        self.logger.info(f"Updating optimal focus time for user {user_id}: {hours}h")
        return self._update(user_id, {'optimal_focus_time': hours})
