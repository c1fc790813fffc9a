"""
Submission of a frozen attempt snapshot to the grading boundary.
"""
import logging
import time
from typing import Optional

from .attempt_store import QuizAttemptStore
from .errors import ConflictError, NotFoundError, QuizAttemptError, TransportError, ValidationError
from .models import AttemptSnapshot, GradingResult
from .quiz_service import QuizService


class AttemptSubmitter:
    """
    Sends an attempt for grading and moves the store to Graded or Failed.

    The submitter does not deduplicate. It relies on the store's phase gate:
    only one caller can get a snapshot out of begin_submission().
    """

    def __init__(self, store: QuizAttemptStore, quiz_service: QuizService):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.quiz_service = quiz_service
        self.submission_count = 0

    async def submit(self, snapshot: AttemptSnapshot) -> Optional[GradingResult]:
        """
        Send the snapshot once and record the outcome on the store.

        Args:
            snapshot: Snapshot returned by begin_submission() or resume_submission()

        Returns:
            The grading result, or None if the submission failed

        Raises:
            ValidationError: If the service rejected the payload or returned a
                result that does not match the quiz
        """
        self.submission_count += 1
        started_at = time.time()
        self.logger.info(
            f"Submitting attempt {snapshot.attempt_id} for quiz {snapshot.quiz_id}",
            extra={
                'event_type': 'attempt_submit_start',
                'attempt_id': snapshot.attempt_id,
                'quiz_id': snapshot.quiz_id,
                'answered': sum(1 for a in snapshot.answers if a is not None),
                'flagged': len(snapshot.flagged),
                'submission_number': self.submission_count,
                'timestamp': started_at
            }
        )

        try:
            result = await self.quiz_service.submit_attempt(
                snapshot.quiz_id, snapshot.attempt_id, snapshot.to_payload()
            )
        except ConflictError as e:
            self.logger.warning(f"Attempt {snapshot.attempt_id} already submitted, fetching existing result: {e}")
            return await self._recover_existing_result(snapshot)
        except (TransportError, NotFoundError) as e:
            self.logger.warning(f"Submission of attempt {snapshot.attempt_id} failed: {e}")
            self.store.mark_failed(e)
            return None
        except ValidationError as e:
            self.logger.error(f"Quiz service rejected attempt {snapshot.attempt_id}: {e}", exc_info=True)
            self.store.mark_failed(e)
            raise
        except Exception as e:
            self.logger.error(f"Unexpected error submitting attempt {snapshot.attempt_id}: {e}", exc_info=True)
            self.store.mark_failed(TransportError(f"Unexpected submission error: {e}"))
            return None

        return self._accept(snapshot, result, started_at)

    async def retry(self) -> Optional[GradingResult]:
        """Resubmit the snapshot frozen at begin_submission(). Only legal from Failed."""
        snapshot = self.store.resume_submission()
        self.logger.info(f"Retrying submission of attempt {snapshot.attempt_id}")
        return await self.submit(snapshot)

    async def _recover_existing_result(self, snapshot: AttemptSnapshot) -> Optional[GradingResult]:
        try:
            result = await self.quiz_service.fetch_result(snapshot.quiz_id, snapshot.attempt_id)
        except QuizAttemptError as e:
            self.logger.warning(f"Could not fetch existing result for attempt {snapshot.attempt_id}: {e}")
            self.store.mark_failed(e)
            return None

        return self._accept(snapshot, result, time.time())

    def _accept(self, snapshot: AttemptSnapshot, result: GradingResult, started_at: float) -> GradingResult:
        expected = self.store.question_count
        if result.total_questions != expected or len(result.correct_answers) != expected:
            error = ValidationError(
                f"Grading result for attempt {snapshot.attempt_id} covers "
                f"{result.total_questions} questions ({len(result.correct_answers)} answers), expected {expected}"
            )
            self.logger.error(str(error))
            self.store.mark_failed(error)
            raise error

        self.store.mark_graded(result)
        self.logger.info(
            f"Attempt {snapshot.attempt_id} graded: {result.score}/{result.total_questions}",
            extra={
                'event_type': 'attempt_graded',
                'attempt_id': snapshot.attempt_id,
                'quiz_id': snapshot.quiz_id,
                'score': result.score,
                'total_questions': result.total_questions,
                'duration': time.time() - started_at,
                'timestamp': time.time()
            }
        )
        return result
