"""
Quiz Service boundary: fetching published quizzes and grading attempts.

HttpQuizService talks to the remote REST service. LocalQuizService loads quiz
JSON files from a directory and grades attempts in-process, for running the
bot without the remote service.
"""
import copy
import json
import logging
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from .errors import ConflictError, NotFoundError, TransportError, ValidationError
from .models import GradingResult, QuizDefinition, StudentResult

logger = logging.getLogger(__name__)


class QuizService:
    """Operations the attempt core consumes from the quiz service."""

    student_id: Optional[str] = None

    def for_student(self, student_id: str) -> "QuizService":
        """Return a service bound to one student's identity."""
        raise NotImplementedError

    async def fetch_quiz(self, quiz_id: str) -> QuizDefinition:
        """Published quiz without correct answers. Raises NotFoundError."""
        raise NotImplementedError

    async def submit_attempt(self, quiz_id: str, attempt_id: str, payload: Dict[str, Any]) -> GradingResult:
        """Grade an attempt. Raises ValidationError or ConflictError."""
        raise NotImplementedError

    async def fetch_result(self, quiz_id: str, attempt_id: str) -> GradingResult:
        """Result of an attempt that was already graded. Raises NotFoundError."""
        raise NotImplementedError

    async def list_course_quizzes(self, course_id: str) -> List[QuizDefinition]:
        raise NotImplementedError

    async def list_student_results(self) -> List[StudentResult]:
        raise NotImplementedError


def _unwrap_list(data: Any, key: str) -> List[Any]:
    # The service answers either with a bare array or {"<key>": [...]}
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get(key), list):
        return data[key]
    raise ValidationError(f"Expected a list of {key} from the quiz service")


class HttpQuizService(QuizService):
    """REST client for the remote quiz service."""

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        timeout: float = 10.0,
        student_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.api_token = api_token
        self.timeout = timeout
        self.student_id = student_id
        self._transport = transport

    def for_student(self, student_id: str) -> "HttpQuizService":
        return HttpQuizService(
            self.base_url,
            api_token=self.api_token,
            timeout=self.timeout,
            student_id=student_id,
            transport=self._transport,
        )

    def _get_headers(self, attempt_id: Optional[str] = None) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        if self.student_id:
            headers["X-Student-Id"] = self.student_id
        if attempt_id:
            headers["X-Attempt-Id"] = attempt_id
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        attempt_id: Optional[str] = None
    ) -> Any:
        """
        Perform one request and map failures onto the error taxonomy.

        404 -> NotFoundError, 400/422 -> ValidationError, 409 -> ConflictError,
        anything else that is not 2xx, or no response at all -> TransportError.
        """
        url = f"{self.base_url}{path}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.request(
                    method,
                    url,
                    json=json_body,
                    headers=self._get_headers(attempt_id)
                )
            except httpx.HTTPError as e:
                logger.error(f"Quiz service request failed: {method} {path}: {e}")
                raise TransportError(f"{method} {path} failed: {e}") from e

        message = self._error_message(response)
        if response.status_code == 404:
            raise NotFoundError(f"{method} {path}: {message}")
        if response.status_code in (400, 422):
            raise ValidationError(f"{method} {path}: {message}")
        if response.status_code == 409:
            raise ConflictError(f"{method} {path}: {message}")
        if response.status_code >= 400:
            logger.error(f"Quiz service HTTP error: {response.status_code} - {message}")
            raise TransportError(f"{method} {path} returned {response.status_code}: {message}")

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{method} {path} returned invalid JSON") from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        if response.status_code < 400:
            return ""
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict) and body.get('message'):
            return str(body['message'])
        return response.text

    async def fetch_quiz(self, quiz_id: str) -> QuizDefinition:
        data = await self._request("GET", f"/quizzes/{quiz_id}")
        definition = QuizDefinition.from_dict(data)
        if not definition.is_published:
            raise NotFoundError(f"Quiz {quiz_id} is not published")
        # Never keep correct answers on the attempting side, even if sent
        return definition.public_copy()

    async def submit_attempt(self, quiz_id: str, attempt_id: str, payload: Dict[str, Any]) -> GradingResult:
        data = await self._request("POST", f"/quizzes/{quiz_id}/submit", json_body=payload, attempt_id=attempt_id)
        return GradingResult.from_dict(data)

    async def fetch_result(self, quiz_id: str, attempt_id: str) -> GradingResult:
        data = await self._request("GET", f"/quizzes/{quiz_id}/attempts/{attempt_id}/result")
        return GradingResult.from_dict(data)

    async def list_course_quizzes(self, course_id: str) -> List[QuizDefinition]:
        data = await self._request("GET", f"/quizzes/course/{course_id}")
        return [QuizDefinition.from_dict(item).public_copy() for item in _unwrap_list(data, 'quizzes')]

    async def list_student_results(self) -> List[StudentResult]:
        data = await self._request("GET", "/quizzes/results/my")
        return [StudentResult.from_dict(item) for item in _unwrap_list(data, 'results')]


class LocalQuizService(QuizService):
    """Loads quiz JSON files from a directory and grades attempts in-process."""

    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB limit

    def __init__(self, quiz_directory: str = "./quizzes/"):
        """
        Args:
            quiz_directory: Directory containing one JSON file per quiz
        """
        self.quiz_directory = Path(quiz_directory)
        self.logger = logging.getLogger(__name__)
        self.loaded_quizzes: Dict[str, QuizDefinition] = {}
        self.course_ids: Dict[str, Optional[str]] = {}
        self.load_errors: List[str] = []
        # attempt id -> student id, quiz id, result, flagged count, completion time
        self._graded: Dict[str, Dict[str, Any]] = {}

    def for_student(self, student_id: str) -> "LocalQuizService":
        # Shallow copy: bound copies share the loaded quizzes and graded results
        bound = copy.copy(self)
        bound.student_id = student_id
        return bound

    def load_quiz_files(self) -> Dict[str, QuizDefinition]:
        """
        Load every *.json file in the quiz directory.

        A file that fails to load is recorded in load_errors and skipped.

        Returns:
            Mapping of quiz id to QuizDefinition (with correct answers)
        """
        self.loaded_quizzes.clear()
        self.course_ids.clear()
        self.load_errors.clear()

        if not self.quiz_directory.exists():
            self.logger.warning(f"Quiz directory {self.quiz_directory} does not exist")
            self.load_errors.append(f"Quiz directory not found: {self.quiz_directory}")
            return self.loaded_quizzes

        try:
            json_files = sorted(self.quiz_directory.glob("*.json"))
        except OSError as e:
            self.load_errors.append(f"System error scanning {self.quiz_directory}: {e}")
            return self.loaded_quizzes

        if not json_files:
            self.logger.warning(f"No JSON files found in {self.quiz_directory}")
            self.load_errors.append(f"No quiz files found in {self.quiz_directory}")
            return self.loaded_quizzes

        for json_file in json_files:
            load_result = self._load_quiz_file_safely(json_file)
            if not load_result['success']:
                self.load_errors.append(f"{json_file.name}: {load_result['error']}")

        self.logger.info(f"Successfully loaded {len(self.loaded_quizzes)} quiz files")
        if self.load_errors:
            self.logger.warning(f"Encountered {len(self.load_errors)} loading errors")

        return self.loaded_quizzes

    def _load_quiz_file_safely(self, json_file: Path) -> Dict[str, Any]:
        """
        Load a single quiz file.

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            if not os.access(json_file, os.R_OK):
                return {'success': False, 'error': "Permission denied: Cannot read file"}

            file_size = json_file.stat().st_size
            if file_size > self.MAX_FILE_SIZE:
                return {
                    'success': False,
                    'error': f"File too large ({file_size / 1024 / 1024:.1f}MB)"
                }

            with open(json_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            if isinstance(data, dict) and '_id' not in data and 'id' not in data:
                data = {**data, 'id': json_file.stem}

            definition = QuizDefinition.from_dict(data)
            definition.validate()

            missing = [
                i + 1 for i, q in enumerate(definition.questions)
                if q.correct_answer_index is None or not 0 <= q.correct_answer_index < len(q.options)
            ]
            if missing:
                return {
                    'success': False,
                    'error': f"Questions without a valid correctAnswer: {missing}"
                }

            self.loaded_quizzes[definition.id] = definition
            course_id = data.get('courseId')
            self.course_ids[definition.id] = str(course_id) if course_id is not None else None
            self.logger.info(f"Loaded quiz '{definition.id}' with {definition.question_count} questions")
            return {'success': True}

        except json.JSONDecodeError as e:
            return {'success': False, 'error': f"Invalid JSON: {e}"}
        except ValidationError as e:
            return {'success': False, 'error': str(e)}
        except OSError as e:
            return {'success': False, 'error': f"System error: {e}"}

    def get_load_errors(self) -> List[str]:
        return self.load_errors.copy()

    def _get_published(self, quiz_id: str) -> QuizDefinition:
        definition = self.loaded_quizzes.get(quiz_id)
        if definition is None or not definition.is_published:
            raise NotFoundError(f"Quiz {quiz_id} not found")
        return definition

    async def fetch_quiz(self, quiz_id: str) -> QuizDefinition:
        return self._get_published(quiz_id).public_copy()

    async def submit_attempt(self, quiz_id: str, attempt_id: str, payload: Dict[str, Any]) -> GradingResult:
        definition = self._get_published(quiz_id)

        answers = payload.get('answers')
        if not isinstance(answers, list) or len(answers) != definition.question_count:
            raise ValidationError(
                f"Expected {definition.question_count} answers for quiz {quiz_id}, "
                f"got {len(answers) if isinstance(answers, list) else type(answers).__name__}"
            )

        if attempt_id in self._graded:
            raise ConflictError(f"Attempt {attempt_id} was already submitted")

        correct_answers = tuple(q.correct_answer_index for q in definition.questions)
        score = sum(1 for given, correct in zip(answers, correct_answers) if given == correct)

        result = GradingResult(
            score=score,
            total_questions=definition.question_count,
            correct_answers=correct_answers,
            result_id=uuid.uuid4().hex,
        )
        self._graded[attempt_id] = {
            'student_id': self.student_id,
            'quiz_id': quiz_id,
            'result': result,
            'flagged_count': len(payload.get('flaggedQuestions') or []),
            'completed_at': datetime.now(),
        }
        self.logger.info(f"Graded attempt {attempt_id} for quiz {quiz_id}: {score}/{definition.question_count}")
        return result

    async def fetch_result(self, quiz_id: str, attempt_id: str) -> GradingResult:
        record = self._graded.get(attempt_id)
        if record is None or record['quiz_id'] != quiz_id:
            raise NotFoundError(f"No graded result for attempt {attempt_id}")
        return record['result']

    async def list_course_quizzes(self, course_id: str) -> List[QuizDefinition]:
        return [
            definition.public_copy()
            for quiz_id, definition in self.loaded_quizzes.items()
            if definition.is_published and self.course_ids.get(quiz_id) == course_id
        ]

    async def list_student_results(self) -> List[StudentResult]:
        results = []
        for record in self._graded.values():
            if record['student_id'] != self.student_id:
                continue
            definition = self.loaded_quizzes.get(record['quiz_id'])
            result = record['result']
            results.append(StudentResult(
                quiz_id=record['quiz_id'],
                quiz_title=definition.title if definition else "Unknown Quiz",
                score=result.score,
                total_questions=result.total_questions,
                flagged_count=record['flagged_count'],
                completed_at=record['completed_at'],
            ))
        return results
