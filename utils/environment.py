import os
import logging
from typing import List, Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

REQUIRED_API_KEYS = ['GROQ_API_KEY']


class EnvironmentConfig:
    """
    Snapshot of the environment variables the messenger depends on.

    A missing GROQ_API_KEY is reported but never fatal: translation degrades
    to passthrough and summary generation reports a configuration error.
    """

    def __init__(self):
        self.groq_api_key = os.environ.get('GROQ_API_KEY') or None
        self.groq_model = os.environ.get('GROQ_MODEL') or None
        self.database_url = os.environ.get('DATABASE_URL') or None
        self.debug_mode = self._parse_bool(os.environ.get('DEBUG_MODE'))

    @staticmethod
    def _parse_bool(value: Optional[str]) -> bool:
        if value is None:
            return False
        return value.strip().lower() in ('1', 'true', 'yes', 'on')

    def validate_environment(self) -> Tuple[bool, List[str]]:
        """
        Check that every required key is set.

        Returns:
            Tuple[bool, List[str]]: (all present, names of missing variables)
        """
        missing_vars = [name for name in REQUIRED_API_KEYS if not self.get_api_key(name)]
        if missing_vars:
            logger.warning(f"Missing environment variables: {', '.join(missing_vars)}")
        return len(missing_vars) == 0, missing_vars

    def get_api_key(self, name: str) -> Optional[str]:
        return os.environ.get(name) or None

    def is_debug_mode(self) -> bool:
        return self.debug_mode

    def get_environment_summary(self) -> str:
        """Human readable status line block; never includes secret values"""
        is_valid, missing_vars = self.validate_environment()
        lines = [
            "Environment Configuration",
            f"Debug Mode: {self.debug_mode}",
            f"API Keys Configured: {'Yes' if is_valid else 'No'}",
            f"Model: {self.groq_model or 'default'}",
            f"Database: {'custom' if self.database_url else 'default'}",
        ]
        if missing_vars:
            lines.append(f"Missing: {', '.join(missing_vars)}")
        return "\n".join(lines)
