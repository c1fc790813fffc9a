"""
In-memory state for one quiz attempt.

All mutation goes through QuizAttemptStore; the phase gate here is what makes
submission happen exactly once on the client side.
"""
import logging
import time
import uuid
from typing import FrozenSet, List, Optional, Set, Tuple

from .errors import InvalidStateError, ValidationError
from .models import (
    ATTEMPT_TRANSITIONS,
    AttemptPhase,
    AttemptSnapshot,
    GradingResult,
    QuizDefinition,
)

logger = logging.getLogger(__name__)


class QuizAttemptStore:
    """Owns answers, flags, remaining time and phase for a single attempt."""

    def __init__(self, definition: QuizDefinition, attempt_id: Optional[str] = None):
        """
        Create the attempt state for a loaded quiz.

        Args:
            definition: Quiz being attempted (correct answers already stripped)
            attempt_id: Identity sent with the submission, generated if omitted

        Raises:
            ValidationError: If the quiz cannot be attempted (see QuizDefinition.validate)
        """
        definition.validate()

        self.definition = definition
        self.attempt_id = attempt_id or uuid.uuid4().hex

        self._answers: List[Optional[int]] = [None] * definition.question_count
        self._flagged: Set[int] = set()
        self._remaining_seconds = definition.time_limit_seconds
        self._current_index = 0
        self._phase = AttemptPhase.LOADING

        self._snapshot: Optional[AttemptSnapshot] = None
        self._result: Optional[GradingResult] = None
        self._last_error: Optional[Exception] = None

    # -- read-only state -------------------------------------------------

    @property
    def phase(self) -> AttemptPhase:
        return self._phase

    @property
    def answers(self) -> Tuple[Optional[int], ...]:
        return tuple(self._answers)

    @property
    def flagged(self) -> FrozenSet[int]:
        return frozenset(self._flagged)

    @property
    def remaining_seconds(self) -> int:
        return self._remaining_seconds

    @property
    def current_question_index(self) -> int:
        return self._current_index

    @property
    def question_count(self) -> int:
        return len(self._answers)

    @property
    def answered_count(self) -> int:
        return sum(1 for answer in self._answers if answer is not None)

    @property
    def flagged_count(self) -> int:
        return len(self._flagged)

    @property
    def snapshot(self) -> Optional[AttemptSnapshot]:
        return self._snapshot

    @property
    def grading_result(self) -> Optional[GradingResult]:
        return self._result

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error

    @property
    def is_terminal(self) -> bool:
        return self._phase == AttemptPhase.GRADED

    # -- transitions -----------------------------------------------------

    def _transition(self, target: AttemptPhase, reason: str) -> None:
        if target not in ATTEMPT_TRANSITIONS[self._phase]:
            raise InvalidStateError(
                f"Cannot move attempt {self.attempt_id} from {self._phase.value} to {target.value}"
            )

        previous = self._phase
        self._phase = target
        logger.info(
            f"Attempt {self.attempt_id}: {previous.value} -> {target.value} ({reason})",
            extra={
                'event_type': 'attempt_phase_transition',
                'attempt_id': self.attempt_id,
                'quiz_id': self.definition.id,
                'from_phase': previous.value,
                'to_phase': target.value,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    def _require_active(self, operation: str) -> None:
        if self._phase != AttemptPhase.ACTIVE:
            raise InvalidStateError(
                f"Cannot {operation} while attempt {self.attempt_id} is {self._phase.value}"
            )

    def _check_question_index(self, question_index: int) -> None:
        if not isinstance(question_index, int) or isinstance(question_index, bool):
            raise ValidationError(f"Question index must be an integer, got {type(question_index).__name__}")
        if not 0 <= question_index < len(self._answers):
            raise ValidationError(
                f"Question index {question_index} out of range [0, {len(self._answers)})"
            )

    def activate(self) -> None:
        """Enter the Active phase once the quiz has finished loading."""
        self._transition(AttemptPhase.ACTIVE, "quiz loaded")

    def select_answer(self, question_index: int, option_index: int) -> None:
        """
        Record the selected option for a question, replacing any previous choice.

        Raises:
            InvalidStateError: If the attempt is not Active
            ValidationError: If either index is out of range
        """
        self._require_active("select an answer")
        self._check_question_index(question_index)

        options = self.definition.questions[question_index].options
        if not isinstance(option_index, int) or isinstance(option_index, bool):
            raise ValidationError(f"Option index must be an integer, got {type(option_index).__name__}")
        if not 0 <= option_index < len(options):
            raise ValidationError(
                f"Option index {option_index} out of range [0, {len(options)}) "
                f"for question {question_index}"
            )

        self._answers[question_index] = option_index

    def clear_answer(self, question_index: int) -> None:
        self._require_active("clear an answer")
        self._check_question_index(question_index)
        self._answers[question_index] = None

    def toggle_flag(self, question_index: int) -> bool:
        """
        Flip the review flag on a question.

        Returns:
            True if the question is flagged after the call
        """
        self._require_active("flag a question")
        self._check_question_index(question_index)

        if question_index in self._flagged:
            self._flagged.discard(question_index)
            return False

        self._flagged.add(question_index)
        return True

    def move_to(self, question_index: int) -> int:
        """Move the navigation cursor, clamped to the valid range."""
        self._current_index = max(0, min(int(question_index), len(self._answers) - 1))
        return self._current_index

    def tick(self) -> int:
        """Take one second off the clock. No-op unless Active."""
        if self._phase == AttemptPhase.ACTIVE and self._remaining_seconds > 0:
            self._remaining_seconds -= 1
        return self._remaining_seconds

    def begin_submission(self) -> AttemptSnapshot:
        """
        Freeze the attempt and move to Submitting.

        The returned snapshot is the only thing sent for grading; nothing that
        happens to the store afterwards can change it.

        Raises:
            InvalidStateError: Unless the attempt is Active
        """
        self._require_active("begin submission")

        self._snapshot = AttemptSnapshot(
            quiz_id=self.definition.id,
            attempt_id=self.attempt_id,
            answers=tuple(self._answers),
            flagged=tuple(sorted(self._flagged)),
        )
        self._transition(AttemptPhase.SUBMITTING, "submission started")
        return self._snapshot

    def resume_submission(self) -> AttemptSnapshot:
        """Go back to Submitting after a failure, returning the original snapshot."""
        if self._phase != AttemptPhase.FAILED or self._snapshot is None:
            raise InvalidStateError(
                f"Cannot retry submission while attempt {self.attempt_id} is {self._phase.value}"
            )

        self._transition(AttemptPhase.SUBMITTING, "retrying submission")
        self._last_error = None
        return self._snapshot

    def mark_graded(self, result: GradingResult) -> None:
        self._transition(AttemptPhase.GRADED, "grading result received")
        self._result = result

    def mark_failed(self, error: Exception) -> None:
        self._transition(AttemptPhase.FAILED, f"submission failed: {error}")
        self._last_error = error
