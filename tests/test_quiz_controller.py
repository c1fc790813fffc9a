"""
Unit tests for QuizSessionController orchestration.
"""
import asyncio
import unittest
from unittest.mock import AsyncMock

from timed_quiz.errors import InvalidStateError, NotFoundError, TransportError, ValidationError
from timed_quiz.models import AttemptPhase
from timed_quiz.quiz_controller import QuizSessionController
from tests.test_fixtures import FakeQuizService, TestFixtures, async_test

TICK = 0.001


class TestControllerLoading(unittest.TestCase):
    """Test cases for load()."""

    @async_test
    async def test_load_starts_active_attempt(self):
        service = FakeQuizService()
        on_change = AsyncMock()
        controller = QuizSessionController(service, "quiz-1", on_change=on_change, tick_interval=0.05)

        self.assertEqual(controller.phase, AttemptPhase.LOADING)
        self.assertIsNone(controller.view())

        self.assertTrue(await controller.load())

        self.assertEqual(controller.phase, AttemptPhase.ACTIVE)
        self.assertTrue(controller.scheduler.is_running)
        on_change.assert_awaited()
        # Correct answers never reach the attempting side
        self.assertTrue(all(q.correct_answer_index is None for q in controller.store.definition.questions))

        await controller.close()
        self.assertFalse(controller.scheduler.is_running)

    @async_test
    async def test_not_found_stays_loading(self):
        service = FakeQuizService()
        service.fetch_error = NotFoundError("no such quiz")
        controller = QuizSessionController(service, "missing")

        self.assertFalse(await controller.load())

        self.assertEqual(controller.phase, AttemptPhase.LOADING)
        self.assertIsInstance(controller.load_error, NotFoundError)
        self.assertIsNone(controller.store)

    @async_test
    async def test_load_can_be_retried_after_transport_error(self):
        service = FakeQuizService()
        service.fetch_error = TransportError("offline")
        controller = QuizSessionController(service, "quiz-1", tick_interval=0.05)

        self.assertFalse(await controller.load())
        service.fetch_error = None
        self.assertTrue(await controller.load())

        self.assertIsNone(controller.load_error)
        self.assertEqual(controller.phase, AttemptPhase.ACTIVE)
        await controller.close()

    @async_test
    async def test_zero_question_quiz_rejected_before_active(self):
        service = FakeQuizService(TestFixtures.create_definition(question_count=0))
        controller = QuizSessionController(service, "quiz-1")

        with self.assertRaises(ValidationError):
            await controller.load()
        self.assertEqual(controller.phase, AttemptPhase.LOADING)
        self.assertIsNone(controller.scheduler)

    @async_test
    async def test_zero_time_limit_rejected_before_active(self):
        service = FakeQuizService(TestFixtures.create_definition(time_limit=0))
        controller = QuizSessionController(service, "quiz-1")

        with self.assertRaises(ValidationError):
            await controller.load()
        self.assertIsInstance(controller.load_error, ValidationError)

    @async_test
    async def test_load_after_close_is_rejected(self):
        controller = QuizSessionController(FakeQuizService(), "quiz-1")
        await controller.close()

        with self.assertRaises(InvalidStateError):
            await controller.load()


class TestControllerInteraction(unittest.TestCase):
    """Test cases for answering, flagging and navigation."""

    async def make_controller(self, **kwargs):
        self.service = FakeQuizService(TestFixtures.create_definition(question_count=5, correct_answers=[0, 1, 2, 3, 0]))
        controller = QuizSessionController(self.service, "quiz-1", tick_interval=0.05, **kwargs)
        await controller.load()
        return controller

    @async_test
    async def test_select_option_uses_current_question(self):
        controller = await self.make_controller()
        await controller.next_question()
        await controller.select_option(2)

        self.assertEqual(controller.store.answers, (None, 2, None, None, None))
        view = controller.view()
        self.assertEqual(view.question_index, 1)
        self.assertEqual(view.selected_index, 2)
        self.assertEqual(view.answered_count, 1)
        await controller.close()

    @async_test
    async def test_navigation_clamps(self):
        controller = await self.make_controller()

        self.assertEqual(await controller.previous_question(), 0)
        self.assertEqual(await controller.go_to(99), 4)
        self.assertEqual(await controller.next_question(), 4)
        await controller.close()

    @async_test
    async def test_toggle_flag_and_view(self):
        controller = await self.make_controller()

        self.assertTrue(await controller.toggle_flag(3))
        self.assertTrue(await controller.toggle_flag())
        view = controller.view()

        self.assertTrue(view.is_flagged)
        self.assertEqual(view.flagged_count, 2)
        self.assertEqual(view.flagged_indices, (0, 3))
        self.assertEqual(view.remaining_display, "10:00")
        self.assertEqual(view.urgency, "normal")
        await controller.close()

    @async_test
    async def test_invalid_option_propagates(self):
        controller = await self.make_controller()

        with self.assertRaises(ValidationError):
            await controller.select_option(7)
        await controller.close()

    @async_test
    async def test_events_before_load_are_rejected(self):
        controller = QuizSessionController(FakeQuizService(), "quiz-1")

        with self.assertRaises(InvalidStateError):
            await controller.select_option(0)
        with self.assertRaises(InvalidStateError):
            await controller.next_question()


class TestControllerSubmission(unittest.TestCase):
    """Test cases for manual submit, timeout auto-submit and retry."""

    async def make_controller(self, question_count=5, **kwargs):
        self.service = FakeQuizService(TestFixtures.create_definition(
            question_count=question_count, time_limit=1, correct_answers=[0, 1, 2, 3, 0][:question_count]
        ))
        controller = QuizSessionController(self.service, "quiz-1", **kwargs)
        await controller.load()
        return controller

    @async_test
    async def test_double_submit_makes_one_network_call(self):
        on_graded = AsyncMock()
        controller = await self.make_controller(on_graded=on_graded, tick_interval=0.05)
        await controller.select_option(0)

        first, second = await asyncio.gather(controller.submit(), controller.submit())

        self.assertEqual(len(self.service.submit_calls), 1)
        self.assertEqual(controller.phase, AttemptPhase.GRADED)
        self.assertIs(first, controller.review)
        on_graded.assert_awaited_once()
        await controller.close()

    @async_test
    async def test_submit_while_submitting_is_noop(self):
        controller = await self.make_controller(tick_interval=0.05)
        self.service.submit_gate = asyncio.Event()

        pending = asyncio.ensure_future(controller.submit())
        await asyncio.sleep(0)
        self.assertEqual(controller.phase, AttemptPhase.SUBMITTING)

        self.assertIsNone(await controller.submit())
        with self.assertRaises(InvalidStateError):
            await controller.select_option(1)

        self.service.submit_gate.set()
        await pending
        self.assertEqual(len(self.service.submit_calls), 1)
        await controller.close()

    @async_test
    async def test_timeout_submits_partial_answers(self):
        graded = asyncio.Event()
        reviews = []

        async def on_graded(review):
            reviews.append(review)
            graded.set()

        controller = await self.make_controller(on_graded=on_graded, tick_interval=TICK)
        await controller.select_option(0, question_index=0)
        await controller.select_option(3, question_index=3)
        while controller.store.remaining_seconds > 2:
            controller.store.tick()

        await asyncio.wait_for(graded.wait(), timeout=2)

        self.assertEqual(len(self.service.submit_calls), 1)
        self.assertEqual(self.service.submit_calls[0]['payload']['answers'], [0, None, None, 3, None])
        self.assertEqual(controller.phase, AttemptPhase.GRADED)
        self.assertEqual(reviews[0].score, 2)
        self.assertEqual(reviews[0].percentage, 40)
        self.assertEqual(reviews[0].label, "Keep studying!")
        self.assertEqual(controller.store.remaining_seconds, 0)
        await controller.close()

    @async_test
    async def test_answers_after_deadline_are_rejected_while_redrawing(self):
        graded = asyncio.Event()
        redrawing = asyncio.Event()
        drawn = []

        async def on_change(view):
            drawn.append((view.phase, view.remaining_seconds))
            if view.phase == AttemptPhase.ACTIVE and view.remaining_seconds <= 1:
                # Stands in for a slow message edit
                redrawing.set()
                await asyncio.sleep(0.05)

        async def on_graded(review):
            graded.set()

        controller = await self.make_controller(on_change=on_change, on_graded=on_graded, tick_interval=TICK)
        while controller.store.remaining_seconds > 2:
            controller.store.tick()

        await asyncio.wait_for(redrawing.wait(), timeout=2)
        while controller.store.remaining_seconds > 0:
            await asyncio.sleep(0)

        with self.assertRaises(InvalidStateError):
            await controller.select_option(2, question_index=1)
        await asyncio.wait_for(graded.wait(), timeout=2)

        self.assertEqual(self.service.submit_calls[0]['payload']['answers'], [None] * 5)
        self.assertNotIn((AttemptPhase.ACTIVE, 0), drawn)
        await controller.close()

    @async_test
    async def test_manual_submit_stops_countdown(self):
        controller = await self.make_controller(tick_interval=TICK)
        await controller.submit()
        remaining = controller.store.remaining_seconds

        await asyncio.sleep(0.02)

        self.assertEqual(controller.store.remaining_seconds, remaining)
        self.assertFalse(controller.scheduler.is_running)
        await controller.close()

    @async_test
    async def test_failure_then_retry_resends_same_snapshot(self):
        on_failed = AsyncMock()
        controller = await self.make_controller(on_failed=on_failed, tick_interval=0.05)
        await controller.select_option(1, question_index=1)
        self.service.submit_outcomes = [TransportError("offline")]

        self.assertIsNone(await controller.submit())
        self.assertEqual(controller.phase, AttemptPhase.FAILED)
        on_failed.assert_awaited_once()
        self.assertIn("unavailable", controller.view().error_message)

        review = await controller.retry_submit()

        self.assertEqual(controller.phase, AttemptPhase.GRADED)
        self.assertEqual(review.score, 1)
        self.assertEqual(self.service.submit_calls[0], self.service.submit_calls[1])
        await controller.close()

    @async_test
    async def test_submit_in_failed_phase_retries(self):
        controller = await self.make_controller(tick_interval=0.05)
        self.service.submit_outcomes = [TransportError("offline")]
        await controller.submit()

        await controller.submit()

        self.assertEqual(len(self.service.submit_calls), 2)
        self.assertEqual(controller.phase, AttemptPhase.GRADED)
        await controller.close()

    @async_test
    async def test_retry_requires_failed_phase(self):
        controller = await self.make_controller(tick_interval=0.05)

        with self.assertRaises(InvalidStateError):
            await controller.retry_submit()
        await controller.close()

    @async_test
    async def test_validation_error_from_service_propagates(self):
        on_failed = AsyncMock()
        controller = await self.make_controller(on_failed=on_failed, tick_interval=0.05)
        self.service.submit_outcomes = [ValidationError("bad payload")]

        with self.assertRaises(ValidationError):
            await controller.submit()
        self.assertEqual(controller.phase, AttemptPhase.FAILED)
        on_failed.assert_awaited_once()
        await controller.close()

    @async_test
    async def test_submit_after_graded_is_noop(self):
        controller = await self.make_controller(tick_interval=0.05)
        review = await controller.submit()

        self.assertIs(await controller.submit(), review)
        self.assertEqual(len(self.service.submit_calls), 1)
        await controller.close()

    @async_test
    async def test_close_never_reactivates(self):
        controller = await self.make_controller(tick_interval=0.05)
        await controller.close()
        await controller.close()

        self.assertIsNone(await controller.submit())
        self.assertEqual(self.service.submit_calls, [])
        self.assertTrue(controller.is_closed)

    @async_test
    async def test_callback_errors_do_not_break_grading(self):
        on_graded = AsyncMock(side_effect=RuntimeError("render failed"))
        controller = await self.make_controller(on_graded=on_graded, tick_interval=0.05)

        review = await controller.submit()

        self.assertIsNotNone(review)
        self.assertEqual(controller.phase, AttemptPhase.GRADED)
        await controller.close()


if __name__ == '__main__':
    unittest.main()
