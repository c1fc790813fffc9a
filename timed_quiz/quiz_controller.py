"""
Quiz session controller.
Orchestrates one timed attempt: load, answer, flag, navigate, submit, review.
"""
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from .attempt_store import QuizAttemptStore
from .countdown import CountdownScheduler
from .errors import InvalidStateError, NotFoundError, TransportError, ValidationError
from .models import AttemptPhase, ReviewView, SessionView
from .quiz_service import QuizService
from .result_renderer import format_time, render_review, timer_urgency
from .submitter import AttemptSubmitter


class QuizSessionController:
    """
    Orchestrates a single quiz attempt.

    The controller loads the quiz, owns the attempt store, the countdown and
    the submitter, and turns UI events into store mutations. The surrounding
    application draws from view() and listens through the callbacks.
    """

    def __init__(
        self,
        quiz_service: QuizService,
        quiz_id: str,
        on_change: Optional[Callable[[SessionView], Awaitable[Any]]] = None,
        on_graded: Optional[Callable[[ReviewView], Awaitable[Any]]] = None,
        on_failed: Optional[Callable[[Exception], Awaitable[Any]]] = None,
        tick_interval: float = 1.0
    ):
        """
        Args:
            quiz_service: Boundary used to fetch and grade the quiz
            quiz_id: Quiz to attempt
            on_change: Awaited with a fresh SessionView after mutations and ticks
            on_graded: Awaited once with the review when grading completes
            on_failed: Awaited with the error when a submission fails
            tick_interval: Seconds between countdown ticks
        """
        self.logger = logging.getLogger(__name__)
        self.quiz_service = quiz_service
        self.quiz_id = quiz_id
        self.on_change = on_change
        self.on_graded = on_graded
        self.on_failed = on_failed
        self.tick_interval = tick_interval

        self.store: Optional[QuizAttemptStore] = None
        self.submitter: Optional[AttemptSubmitter] = None
        self.scheduler: Optional[CountdownScheduler] = None
        self.review: Optional[ReviewView] = None
        self.load_error: Optional[Exception] = None
        self._closed = False

    @property
    def phase(self) -> AttemptPhase:
        if self.store is None:
            return AttemptPhase.LOADING
        return self.store.phase

    @property
    def is_closed(self) -> bool:
        return self._closed

    # -- loading ---------------------------------------------------------

    async def load(self) -> bool:
        """
        Fetch the quiz and start the attempt.

        NotFoundError and TransportError leave the session in Loading with
        load_error set; calling load() again retries.

        Returns:
            True once the attempt is Active

        Raises:
            ValidationError: If the quiz has no questions or no positive time limit
            InvalidStateError: If the session is closed or already loaded
        """
        if self._closed:
            raise InvalidStateError(f"Session for quiz {self.quiz_id} is closed")
        if self.store is not None:
            raise InvalidStateError(f"Quiz {self.quiz_id} is already loaded")

        self.load_error = None
        try:
            definition = await self.quiz_service.fetch_quiz(self.quiz_id)
        except (NotFoundError, TransportError) as e:
            self.load_error = e
            self.logger.warning(f"Failed to load quiz {self.quiz_id}: {e}")
            return False

        if self._closed:
            self.logger.info(f"Session for quiz {self.quiz_id} closed while loading")
            return False

        try:
            store = QuizAttemptStore(definition)
        except ValidationError as e:
            self.load_error = e
            self.logger.error(f"Quiz {self.quiz_id} cannot be attempted: {e}")
            raise

        store.activate()
        self.store = store
        self.submitter = AttemptSubmitter(store, self.quiz_service)
        self.scheduler = CountdownScheduler(
            store,
            on_expire=self._on_timeout,
            on_tick=self._on_tick,
            interval=self.tick_interval
        )
        self.scheduler.start()

        self.logger.info(
            f"Started attempt {store.attempt_id} for quiz {self.quiz_id}: "
            f"{definition.question_count} questions, {definition.time_limit_minutes} minutes",
            extra={
                'event_type': 'attempt_started',
                'attempt_id': store.attempt_id,
                'quiz_id': self.quiz_id,
                'question_count': definition.question_count,
                'time_limit_minutes': definition.time_limit_minutes,
                'timestamp': time.time()
            }
        )
        await self._notify_change()
        return True

    # -- UI events -------------------------------------------------------

    def _require_store(self, operation: str) -> QuizAttemptStore:
        if self.store is None:
            raise InvalidStateError(f"Cannot {operation} before quiz {self.quiz_id} has loaded")
        return self.store

    def _guarded(self, operation: str, func: Callable[[], Any]) -> Any:
        # Contract violations are logged here and still propagate to the caller
        try:
            return func()
        except (InvalidStateError, ValidationError) as e:
            self.logger.error(f"Rejected {operation} on quiz {self.quiz_id}: {e}")
            raise

    async def select_option(self, option_index: int, question_index: Optional[int] = None) -> None:
        """Select an option on the given question (default: the current one)."""
        def apply():
            store = self._require_store("select an answer")
            index = store.current_question_index if question_index is None else question_index
            store.select_answer(index, option_index)

        self._guarded("select_option", apply)
        await self._notify_change()

    async def clear_answer(self, question_index: Optional[int] = None) -> None:
        def apply():
            store = self._require_store("clear an answer")
            index = store.current_question_index if question_index is None else question_index
            store.clear_answer(index)

        self._guarded("clear_answer", apply)
        await self._notify_change()

    async def toggle_flag(self, question_index: Optional[int] = None) -> bool:
        """Toggle the review flag. Returns True if the question is now flagged."""
        def apply():
            store = self._require_store("flag a question")
            index = store.current_question_index if question_index is None else question_index
            return store.toggle_flag(index)

        flagged = self._guarded("toggle_flag", apply)
        await self._notify_change()
        return flagged

    async def go_to(self, question_index: int) -> int:
        """Move to a question. Out-of-range indices are clamped."""
        index = self._require_store("navigate").move_to(question_index)
        await self._notify_change()
        return index

    async def next_question(self) -> int:
        return await self.go_to(self._require_store("navigate").current_question_index + 1)

    async def previous_question(self) -> int:
        return await self.go_to(self._require_store("navigate").current_question_index - 1)

    # -- submission ------------------------------------------------------

    async def submit(self, reason: str = "manual") -> Optional[ReviewView]:
        """
        Submit the attempt.

        Calls while Submitting or Graded do nothing, so a double click or a
        click racing the timeout results in one submission. From Failed this
        retries with the frozen snapshot.

        Returns:
            The review once graded, otherwise None
        """
        if self._closed or self.store is None:
            self.logger.debug(f"Ignoring {reason} submit for quiz {self.quiz_id}: session not active")
            return None

        phase = self.store.phase
        if phase in (AttemptPhase.SUBMITTING, AttemptPhase.GRADED):
            self.logger.info(f"Ignoring {reason} submit for attempt {self.store.attempt_id}: already {phase.value}")
            return self.review
        if phase == AttemptPhase.FAILED:
            return await self.retry_submit()

        # The snapshot is taken before the first await so nothing can slip in after it
        self.scheduler.stop(reason=f"{reason}_submit")
        snapshot = self._guarded("submit", self.store.begin_submission)
        self.logger.info(
            f"Attempt {snapshot.attempt_id} submitting ({reason})",
            extra={
                'event_type': 'attempt_submit_requested',
                'attempt_id': snapshot.attempt_id,
                'reason': reason,
                'remaining_seconds': self.store.remaining_seconds,
                'timestamp': time.time()
            }
        )
        await self._notify_change()
        return await self._finish_submission(self.submitter.submit(snapshot))

    async def retry_submit(self) -> Optional[ReviewView]:
        """Resend the frozen snapshot after a failed submission."""
        store = self._require_store("retry submission")
        if store.phase != AttemptPhase.FAILED:
            error = InvalidStateError(f"Cannot retry attempt {store.attempt_id} while {store.phase.value}")
            self.logger.error(str(error))
            raise error

        return await self._finish_submission(self.submitter.retry())

    async def _finish_submission(self, submission: Awaitable[Any]) -> Optional[ReviewView]:
        try:
            result = await submission
        except ValidationError as e:
            await self._notify(self.on_failed, e)
            await self._notify_change()
            raise

        store = self.store
        if store.phase == AttemptPhase.GRADED:
            snapshot = store.snapshot
            self.review = render_review(store.definition, snapshot.answers, snapshot.flagged, result)
            await self._notify(self.on_graded, self.review)
        elif store.phase == AttemptPhase.FAILED:
            await self._notify(self.on_failed, store.last_error)

        await self._notify_change()
        return self.review

    async def _on_timeout(self) -> None:
        self.logger.info(f"Time is up for attempt {self.store.attempt_id}, submitting automatically")
        await self.submit(reason="timeout")

    async def _on_tick(self, remaining: int) -> None:
        await self._notify_change()

    # -- teardown --------------------------------------------------------

    async def close(self) -> None:
        """Tear the session down and release the countdown. Safe to call repeatedly."""
        if self._closed:
            return

        self._closed = True
        if self.scheduler is not None:
            self.scheduler.stop(reason="teardown")
            await self.scheduler.wait_closed()

        self.logger.info(
            f"Closed session for quiz {self.quiz_id} in phase {self.phase.value}",
            extra={
                'event_type': 'session_closed',
                'quiz_id': self.quiz_id,
                'phase': self.phase.value,
                'timestamp': time.time()
            }
        )

    # -- rendering -------------------------------------------------------

    def view(self) -> Optional[SessionView]:
        """Current state for display, or None before the quiz has loaded."""
        store = self.store
        if store is None:
            return None

        index = store.current_question_index
        question = store.definition.questions[index]
        flagged = store.flagged
        error = store.last_error
        remaining = store.remaining_seconds

        return SessionView(
            quiz_id=store.definition.id,
            title=store.definition.title,
            phase=store.phase,
            question_index=index,
            question_count=store.question_count,
            question_text=question.question_text,
            options=question.options,
            selected_index=store.answers[index],
            is_flagged=index in flagged,
            answered_count=store.answered_count,
            flagged_count=len(flagged),
            flagged_indices=tuple(sorted(flagged)),
            remaining_seconds=remaining,
            remaining_display=format_time(remaining),
            urgency=timer_urgency(remaining),
            error_message=getattr(error, 'user_message', str(error)) if error else None,
        )

    async def _notify_change(self) -> None:
        if self.on_change is None:
            return
        view = self.view()
        if view is not None:
            await self._notify(self.on_change, view)

    async def _notify(self, callback: Optional[Callable[[Any], Awaitable[Any]]], payload: Any) -> None:
        if callback is None:
            return
        try:
            await callback(payload)
        except Exception as e:
            self.logger.error(f"Session callback failed for quiz {self.quiz_id}: {e}", exc_info=True)
