"""
Configuration manager for the timed quiz bot: service backend, display refresh and paths.
"""
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from .quiz_service import HttpQuizService, LocalQuizService, QuizService


@dataclass
class AppSettings:
    """Effective settings after config.json and environment overrides."""
    backend: str = "local"
    base_url: str = "http://localhost:5000/api"
    api_token: Optional[str] = None
    request_timeout: float = 10.0
    quiz_directory: str = "./quizzes/"
    display_refresh_seconds: int = 5


class ConfigManager:
    """Manages bot configuration settings with validated setters."""

    BACKENDS = ("http", "local")

    # Validation limits
    MIN_REQUEST_TIMEOUT = 1.0
    MAX_REQUEST_TIMEOUT = 120.0
    MIN_DISPLAY_REFRESH = 1
    MAX_DISPLAY_REFRESH = 60

    SERVICE_TOKEN_ENV = 'QUIZ_SERVICE_TOKEN'

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._settings = AppSettings()

    def get_settings(self) -> AppSettings:
        """
        Get current settings.

        Returns:
            A copy of the AppSettings, so callers cannot change them behind the setters
        """
        return replace(self._settings)

    @staticmethod
    def _failure(error_msg: str, user_message: str) -> Dict[str, Any]:
        return {'success': False, 'error': error_msg, 'user_message': user_message}

    @staticmethod
    def _success(message: str) -> Dict[str, Any]:
        return {'success': True, 'message': message, 'user_message': f"✅ {message}"}

    def _check_range(self, name: str, value: Any, minimum: float, maximum: float, unit: str,
                     integer_only: bool = False) -> Optional[Dict[str, Any]]:
        expected = int if integer_only else (int, float)
        if isinstance(value, bool) or not isinstance(value, expected):
            error_msg = f"{name} must be a number, got {type(value).__name__}"
            self.logger.error(error_msg)
            return self._failure(error_msg, f"❌ Invalid input: Expected a number, got {type(value).__name__}")

        if value < minimum:
            error_msg = f"{name} must be at least {minimum} {unit}"
            self.logger.error(error_msg)
            return self._failure(error_msg, f"❌ {name} too small: Minimum is {minimum} {unit}")

        if value > maximum:
            error_msg = f"{name} cannot exceed {maximum} {unit}"
            self.logger.error(error_msg)
            return self._failure(error_msg, f"❌ {name} too large: Maximum is {maximum} {unit}")

        return None

    def set_backend(self, backend: str) -> Dict[str, Any]:
        """
        Choose where quizzes come from.

        Args:
            backend: "http" for the remote quiz service, "local" for quiz JSON files

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if backend not in self.BACKENDS:
            error_msg = f"Unknown service backend: {backend!r}"
            self.logger.error(error_msg)
            return self._failure(error_msg, f"❌ Backend must be one of: {', '.join(self.BACKENDS)}")

        self._settings.backend = backend
        self.logger.info(f"Quiz service backend set to {backend}")
        return self._success(f"Quiz service backend set to {backend}")

    def set_base_url(self, base_url: str) -> Dict[str, Any]:
        if not isinstance(base_url, str) or not base_url.startswith(("http://", "https://")):
            error_msg = f"Base URL must be an http(s) URL, got {base_url!r}"
            self.logger.error(error_msg)
            return self._failure(error_msg, "❌ Invalid service URL: it must start with http:// or https://")

        self._settings.base_url = base_url.rstrip('/')
        self.logger.info(f"Quiz service base URL set to {self._settings.base_url}")
        return self._success(f"Quiz service URL set to {self._settings.base_url}")

    def set_api_token(self, api_token: Optional[str]) -> Dict[str, Any]:
        if api_token is not None and not isinstance(api_token, str):
            error_msg = f"API token must be a string, got {type(api_token).__name__}"
            self.logger.error(error_msg)
            return self._failure(error_msg, "❌ Invalid API token")

        self._settings.api_token = api_token or None
        # Never log the token itself
        self.logger.info("Quiz service API token " + ("set" if self._settings.api_token else "cleared"))
        return self._success("Quiz service API token updated")

    def set_request_timeout(self, seconds: float) -> Dict[str, Any]:
        """Set the HTTP request timeout (1-120 seconds)."""
        failure = self._check_range(
            "Request timeout", seconds, self.MIN_REQUEST_TIMEOUT, self.MAX_REQUEST_TIMEOUT, "seconds"
        )
        if failure:
            return failure

        self._settings.request_timeout = float(seconds)
        self.logger.info(f"Request timeout set to {seconds} seconds")
        return self._success(f"Request timeout set to {seconds} seconds")

    def set_display_refresh(self, seconds: int) -> Dict[str, Any]:
        """Set how often the countdown on the quiz message is redrawn (1-60 seconds)."""
        failure = self._check_range(
            "Display refresh", seconds, self.MIN_DISPLAY_REFRESH, self.MAX_DISPLAY_REFRESH, "seconds",
            integer_only=True
        )
        if failure:
            return failure

        self._settings.display_refresh_seconds = seconds
        self.logger.info(f"Display refresh set to {seconds} seconds")
        return self._success(f"Countdown display refreshes every {seconds} seconds")

    def set_quiz_directory(self, directory: str) -> Dict[str, Any]:
        """
        Set the directory path for quiz files used by the local backend.

        Args:
            directory: Path to quiz files directory

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(directory, str):
            error_msg = f"Quiz directory must be a string, got {type(directory).__name__}"
            self.logger.error(error_msg)
            return self._failure(
                error_msg, f"❌ Invalid input: Expected a path string, got {type(directory).__name__}"
            )

        if not directory.strip():
            error_msg = "Quiz directory cannot be empty"
            self.logger.error(error_msg)
            return self._failure(error_msg, "❌ Directory path cannot be empty")

        try:
            normalized_path = str(Path(directory).resolve())
        except (OSError, ValueError) as e:
            error_msg = f"Invalid directory path format: {e}"
            self.logger.error(error_msg)
            return self._failure(error_msg, f"❌ Invalid path format: {directory}")

        system_dirs = ['/bin', '/usr', '/etc', '/sys', '/proc', 'C:\\Windows', 'C:\\Program Files']
        if any(normalized_path.startswith(sys_dir) for sys_dir in system_dirs):
            error_msg = f"Cannot use system directory: {normalized_path}"
            self.logger.error(error_msg)
            return self._failure(error_msg, f"❌ Cannot use system directory: {directory}")

        self._settings.quiz_directory = normalized_path
        self.logger.info(f"Quiz directory set to {normalized_path}")
        return self._success(f"Quiz directory set to {normalized_path}")

    def apply_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Apply the service and session sections of config.json, then environment overrides.

        Invalid values are reported and the defaults kept.

        Returns:
            User-friendly messages for every value that was rejected
        """
        service = config.get('service', {}) or {}
        session = config.get('session', {}) or {}

        results = []
        if 'backend' in service:
            results.append(self.set_backend(service['backend']))
        if 'base_url' in service:
            results.append(self.set_base_url(service['base_url']))
        if 'api_token' in service:
            results.append(self.set_api_token(service['api_token']))
        if 'request_timeout' in service:
            results.append(self.set_request_timeout(service['request_timeout']))
        if 'quiz_directory' in service:
            results.append(self.set_quiz_directory(service['quiz_directory']))
        if 'display_refresh_seconds' in session:
            results.append(self.set_display_refresh(session['display_refresh_seconds']))
        if 'tick_interval' in session:
            self.logger.warning("Ignoring session.tick_interval: the countdown always ticks once per second")

        env_token = os.getenv(self.SERVICE_TOKEN_ENV)
        if env_token:
            results.append(self.set_api_token(env_token))

        problems = [r['user_message'] for r in results if not r['success']]
        if problems:
            self.logger.warning(f"Configuration applied with {len(problems)} rejected values")
        else:
            self.logger.info("Configuration applied successfully")
        return problems

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {"valid": True, "issues": []}
        settings = self._settings

        if settings.backend == "http" and not settings.base_url:
            validation_result["issues"].append("HTTP backend selected but no base URL configured")
        if settings.backend == "local" and not Path(settings.quiz_directory).exists():
            validation_result["issues"].append(f"Quiz directory does not exist: {settings.quiz_directory}")
        if not self.MIN_DISPLAY_REFRESH <= settings.display_refresh_seconds <= self.MAX_DISPLAY_REFRESH:
            validation_result["issues"].append(f"Invalid display refresh: {settings.display_refresh_seconds}")

        validation_result["valid"] = not validation_result["issues"]
        return validation_result

    def get_settings_summary(self) -> str:
        """Human-readable summary of the current settings (never includes the token)."""
        settings = self._settings
        source = settings.base_url if settings.backend == "http" else settings.quiz_directory
        return (
            f"Quiz Service:\n"
            f"• Backend: {settings.backend} ({source})\n"
            f"• Request timeout: {settings.request_timeout:g} seconds\n"
            f"• Countdown refresh: every {settings.display_refresh_seconds} seconds"
        )

    def create_quiz_service(self) -> QuizService:
        """Build the configured quiz service; the local backend loads its quiz files here."""
        settings = self._settings
        if settings.backend == "http":
            self.logger.info(f"Using remote quiz service at {settings.base_url}")
            return HttpQuizService(
                settings.base_url,
                api_token=settings.api_token,
                timeout=settings.request_timeout
            )

        service = LocalQuizService(settings.quiz_directory)
        service.load_quiz_files()
        for error in service.get_load_errors():
            self.logger.warning(f"Quiz file problem: {error}")
        return service
