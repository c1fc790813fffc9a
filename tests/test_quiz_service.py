"""
Unit tests for the quiz service boundary: HTTP client status mapping and local file-backed grading.
"""
import json
import shutil
import tempfile
import unittest

import httpx

from timed_quiz.errors import ConflictError, NotFoundError, TransportError, ValidationError
from timed_quiz.quiz_service import HttpQuizService, LocalQuizService
from tests.test_fixtures import TestFixtures, async_test

BASE_URL = "http://quiz.test/api"


class RecordingHandler:
    """httpx.MockTransport handler returning canned responses and recording requests."""

    def __init__(self, status_code=200, body=None, raw=None, error=None):
        self.status_code = status_code
        self.body = body
        self.raw = raw
        self.error = error
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error(request)
        if self.raw is not None:
            return httpx.Response(self.status_code, content=self.raw)
        return httpx.Response(self.status_code, json=self.body)


def make_service(handler, **kwargs) -> HttpQuizService:
    return HttpQuizService(BASE_URL, transport=httpx.MockTransport(handler), **kwargs)


class TestHttpQuizService(unittest.TestCase):
    """Test cases for HttpQuizService."""

    @async_test
    async def test_fetch_quiz_unwraps_and_strips_answers(self):
        handler = RecordingHandler(body={"quiz": TestFixtures.create_quiz_dict("q1")})
        service = make_service(handler, api_token="secret")

        definition = await service.fetch_quiz("q1")

        self.assertEqual(definition.id, "q1")
        self.assertTrue(all(q.correct_answer_index is None for q in definition.questions))
        request = handler.requests[0]
        self.assertEqual(request.method, "GET")
        self.assertEqual(str(request.url), f"{BASE_URL}/quizzes/q1")
        self.assertEqual(request.headers["Authorization"], "Bearer secret")

    @async_test
    async def test_unpublished_quiz_is_not_found(self):
        handler = RecordingHandler(body=TestFixtures.create_quiz_dict("q1", published=False))

        with self.assertRaises(NotFoundError):
            await make_service(handler).fetch_quiz("q1")

    @async_test
    async def test_submit_sends_payload_and_identity_headers(self):
        handler = RecordingHandler(body={
            "score": 2, "totalQuestions": 3, "correctAnswers": [1, 2, 0], "resultId": "r1"
        })
        service = make_service(handler).for_student("student-7")
        payload = {"answers": [1, 2, None], "flaggedQuestions": [2]}

        result = await service.submit_attempt("q1", "attempt-1", payload)

        self.assertEqual(result.score, 2)
        self.assertEqual(result.result_id, "r1")
        request = handler.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.url.path, "/api/quizzes/q1/submit")
        self.assertEqual(json.loads(request.content), payload)
        self.assertEqual(request.headers["X-Student-Id"], "student-7")
        self.assertEqual(request.headers["X-Attempt-Id"], "attempt-1")
        self.assertNotIn("Authorization", request.headers)

    @async_test
    async def test_status_codes_map_to_errors(self):
        cases = {
            404: NotFoundError,
            400: ValidationError,
            422: ValidationError,
            409: ConflictError,
            500: TransportError,
            503: TransportError,
            401: TransportError,
        }
        for status, error_type in cases.items():
            with self.subTest(status=status):
                handler = RecordingHandler(status_code=status, body={"message": "nope"})
                with self.assertRaises(error_type) as ctx:
                    await make_service(handler).submit_attempt("q1", "a1", {"answers": []})
                self.assertIn("nope", str(ctx.exception))

    @async_test
    async def test_connection_failure_is_transport_error(self):
        def refuse(request):
            return httpx.ConnectError("connection refused", request=request)

        handler = RecordingHandler(error=refuse)

        with self.assertRaises(TransportError):
            await make_service(handler).fetch_quiz("q1")

    @async_test
    async def test_invalid_json_is_transport_error(self):
        handler = RecordingHandler(raw=b"<html>gateway</html>")

        with self.assertRaises(TransportError):
            await make_service(handler).fetch_quiz("q1")

    @async_test
    async def test_malformed_grading_result_is_validation_error(self):
        handler = RecordingHandler(body={"score": 1})

        with self.assertRaises(ValidationError):
            await make_service(handler).submit_attempt("q1", "a1", {"answers": [1]})

    @async_test
    async def test_fetch_result_path(self):
        handler = RecordingHandler(body={"score": 1, "totalQuestions": 1, "correctAnswers": [0]})

        result = await make_service(handler).fetch_result("q1", "a1")

        self.assertEqual(result.total_questions, 1)
        self.assertEqual(handler.requests[0].url.path, "/api/quizzes/q1/attempts/a1/result")

    @async_test
    async def test_list_course_quizzes_accepts_bare_and_wrapped(self):
        quizzes = [TestFixtures.create_quiz_dict("q1"), TestFixtures.create_quiz_dict("q2")]

        for body in (quizzes, {"quizzes": quizzes}):
            with self.subTest(wrapped=isinstance(body, dict)):
                handler = RecordingHandler(body=body)
                listed = await make_service(handler).list_course_quizzes("course-1")
                self.assertEqual([q.id for q in listed], ["q1", "q2"])
                self.assertEqual(handler.requests[0].url.path, "/api/quizzes/course/course-1")

    @async_test
    async def test_list_student_results(self):
        handler = RecordingHandler(body={"results": [
            {"quizId": {"_id": "q1", "title": "Algebra"}, "score": 4, "totalQuestions": 5},
        ]})

        results = await make_service(handler).for_student("s1").list_student_results()

        self.assertEqual(results[0].quiz_title, "Algebra")
        self.assertEqual(results[0].percentage, 80)
        self.assertEqual(handler.requests[0].url.path, "/api/quizzes/results/my")

    @async_test
    async def test_malformed_result_row_is_validation_error(self):
        handler = RecordingHandler(body=[{"quizId": "q1", "score": "four", "totalQuestions": 5}])

        with self.assertRaises(ValidationError):
            await make_service(handler).for_student("s1").list_student_results()

    @async_test
    async def test_unexpected_list_shape_is_validation_error(self):
        handler = RecordingHandler(body={"items": []})

        with self.assertRaises(ValidationError):
            await make_service(handler).list_student_results()


class TestLocalQuizService(unittest.TestCase):
    """Test cases for LocalQuizService."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        TestFixtures.create_temp_quiz_files(self.temp_dir)
        self.service = LocalQuizService(self.temp_dir)
        self.service.load_quiz_files()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_loads_valid_files_and_reports_errors(self):
        self.assertEqual(
            sorted(self.service.loaded_quizzes),
            ["draft-quiz", "other-quiz", "stem_named", "valid-quiz"]
        )
        errors = self.service.get_load_errors()
        self.assertEqual(len(errors), 3)
        self.assertTrue(any(e.startswith("invalid.json") and "Invalid JSON" in e for e in errors))
        self.assertTrue(any(e.startswith("missing_answer.json") for e in errors))
        self.assertTrue(any(e.startswith("empty.json") for e in errors))

    def test_missing_directory_is_reported(self):
        service = LocalQuizService(f"{self.temp_dir}/nowhere")
        self.assertEqual(service.load_quiz_files(), {})
        self.assertEqual(len(service.get_load_errors()), 1)

    @async_test
    async def test_fetch_quiz_strips_answers(self):
        definition = await self.service.fetch_quiz("valid-quiz")

        self.assertEqual(definition.question_count, 3)
        self.assertTrue(all(q.correct_answer_index is None for q in definition.questions))

    @async_test
    async def test_unknown_and_unpublished_quizzes_are_not_found(self):
        for quiz_id in ("draft-quiz", "nope"):
            with self.subTest(quiz_id=quiz_id):
                with self.assertRaises(NotFoundError):
                    await self.service.fetch_quiz(quiz_id)

    @async_test
    async def test_grades_attempt(self):
        result = await self.service.submit_attempt(
            "valid-quiz", "a1", {"answers": [1, None, 3], "flaggedQuestions": [1]}
        )

        self.assertEqual(result.score, 1)
        self.assertEqual(result.total_questions, 3)
        self.assertEqual(result.correct_answers, (1, 2, 0))
        self.assertIsNotNone(result.result_id)
        self.assertIs(await self.service.fetch_result("valid-quiz", "a1"), result)

    @async_test
    async def test_answer_length_mismatch_is_validation_error(self):
        with self.assertRaises(ValidationError):
            await self.service.submit_attempt("valid-quiz", "a1", {"answers": [1, 2]})
        with self.assertRaises(ValidationError):
            await self.service.submit_attempt("valid-quiz", "a1", {})

    @async_test
    async def test_duplicate_attempt_is_conflict(self):
        await self.service.submit_attempt("valid-quiz", "a1", {"answers": [1, 2, 0]})

        with self.assertRaises(ConflictError):
            await self.service.submit_attempt("valid-quiz", "a1", {"answers": [0, 0, 0]})
        self.assertEqual((await self.service.fetch_result("valid-quiz", "a1")).score, 3)

    @async_test
    async def test_fetch_result_for_unknown_attempt(self):
        with self.assertRaises(NotFoundError):
            await self.service.fetch_result("valid-quiz", "never-submitted")

    @async_test
    async def test_list_course_quizzes_hides_unpublished(self):
        listed = await self.service.list_course_quizzes("course-1")
        self.assertEqual([q.id for q in listed], ["valid-quiz"])

    def test_for_student_shares_loaded_quizzes(self):
        bound = self.service.for_student("alice")

        self.assertIsInstance(bound, LocalQuizService)
        self.assertEqual(bound.student_id, "alice")
        self.assertIsNone(self.service.student_id)
        self.assertIs(bound.loaded_quizzes, self.service.loaded_quizzes)

    @async_test
    async def test_results_are_per_student(self):
        alice = self.service.for_student("alice")
        bob = self.service.for_student("bob")

        await alice.submit_attempt("valid-quiz", "a1", {"answers": [1, 2, 0], "flaggedQuestions": [0, 2]})
        await bob.submit_attempt("other-quiz", "b1", {"answers": [0, 0]})

        alice_results = await alice.list_student_results()
        self.assertEqual(len(alice_results), 1)
        self.assertEqual(alice_results[0].quiz_title, "Quiz valid-quiz")
        self.assertEqual(alice_results[0].flagged_count, 2)
        self.assertEqual(alice_results[0].percentage, 100)
        self.assertEqual([r.quiz_id for r in await bob.list_student_results()], ["other-quiz"])


if __name__ == '__main__':
    unittest.main()
