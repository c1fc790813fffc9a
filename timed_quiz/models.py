"""
Core data models for timed quiz attempts.
"""
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from .errors import ValidationError

OPTIONS_PER_QUESTION = 4


class AttemptPhase(str, Enum):
    """Lifecycle phases of a single quiz attempt."""
    LOADING = "loading"
    ACTIVE = "active"
    SUBMITTING = "submitting"
    GRADED = "graded"
    FAILED = "failed"


# Failed -> Submitting is the retry path; Graded has no way out.
ATTEMPT_TRANSITIONS: Dict[AttemptPhase, Set[AttemptPhase]] = {
    AttemptPhase.LOADING: {AttemptPhase.ACTIVE},
    AttemptPhase.ACTIVE: {AttemptPhase.SUBMITTING},
    AttemptPhase.SUBMITTING: {AttemptPhase.GRADED, AttemptPhase.FAILED},
    AttemptPhase.FAILED: {AttemptPhase.SUBMITTING},
    AttemptPhase.GRADED: set(),
}


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def compute_percentage(score: int, total: int) -> int:
    """Whole-number percentage, rounding halves up. Zero when total is zero."""
    if total <= 0:
        return 0
    return int(math.floor(score * 100 / total + 0.5))


@dataclass(frozen=True)
class Question:
    """A single multiple-choice question."""
    question_text: str
    options: Tuple[str, ...]
    correct_answer_index: Optional[int] = None

    def public_copy(self) -> "Question":
        """Copy safe to hand to an attempting client (no correct answer)."""
        return replace(self, correct_answer_index=None)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Question":
        if not isinstance(data, dict):
            raise ValidationError(f"Question must be an object, got {type(data).__name__}")

        text = data.get('questionText')
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Question is missing 'questionText'")

        options = data.get('options')
        if not isinstance(options, list) or not all(isinstance(o, str) for o in options):
            raise ValidationError(f"Question '{text}' must have a list of string options")

        correct = data.get('correctAnswer')
        if correct is not None and not _is_int(correct):
            raise ValidationError(f"Question '{text}' has a non-integer 'correctAnswer'")

        return cls(question_text=text, options=tuple(options), correct_answer_index=correct)


@dataclass(frozen=True)
class QuizDefinition:
    """A published quiz. Immutable once loaded."""
    id: str
    title: str
    time_limit_minutes: int
    questions: Tuple[Question, ...]
    is_published: bool = True

    @property
    def question_count(self) -> int:
        return len(self.questions)

    @property
    def time_limit_seconds(self) -> int:
        return self.time_limit_minutes * 60

    def public_copy(self) -> "QuizDefinition":
        return replace(self, questions=tuple(q.public_copy() for q in self.questions))

    def validate(self) -> None:
        """
        Check the definition can start an attempt.

        Raises:
            ValidationError: If there are no questions, the time limit is not a
                positive integer, or a question does not have exactly four options.
        """
        if self.question_count == 0:
            raise ValidationError(
                f"Quiz {self.id} has no questions",
                user_message="This quiz has no questions yet."
            )

        if not _is_int(self.time_limit_minutes) or self.time_limit_minutes <= 0:
            raise ValidationError(
                f"Quiz {self.id} must have a positive time limit, got {self.time_limit_minutes!r}",
                user_message="This quiz does not have a valid time limit."
            )

        for index, question in enumerate(self.questions):
            if len(question.options) != OPTIONS_PER_QUESTION:
                raise ValidationError(
                    f"Question {index + 1} of quiz {self.id} has {len(question.options)} options, "
                    f"expected {OPTIONS_PER_QUESTION}"
                )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuizDefinition":
        """
        Parse the quiz wire format.

        Accepts both a bare quiz object and one wrapped as {"quiz": {...}}.
        Shape errors raise ValidationError; semantic checks are left to validate().
        """
        if isinstance(data, dict) and isinstance(data.get('quiz'), dict):
            data = data['quiz']

        if not isinstance(data, dict):
            raise ValidationError(f"Quiz payload must be an object, got {type(data).__name__}")

        quiz_id = data.get('_id', data.get('id'))
        if quiz_id is None:
            raise ValidationError("Quiz payload is missing an id")

        title = data.get('title')
        if not isinstance(title, str):
            raise ValidationError(f"Quiz {quiz_id} is missing a title")

        raw_questions = data.get('questions', [])
        if not isinstance(raw_questions, list):
            raise ValidationError(f"Quiz {quiz_id} 'questions' must be a list")

        return cls(
            id=str(quiz_id),
            title=title,
            time_limit_minutes=data.get('timeLimit'),
            questions=tuple(Question.from_dict(q) for q in raw_questions),
            is_published=bool(data.get('isPublished', True)),
        )


@dataclass(frozen=True)
class AttemptSnapshot:
    """Frozen copy of answers and flags taken when submission begins."""
    quiz_id: str
    attempt_id: str
    answers: Tuple[Optional[int], ...]
    flagged: Tuple[int, ...]

    def to_payload(self) -> Dict[str, List[Optional[int]]]:
        return {
            'answers': list(self.answers),
            'flaggedQuestions': sorted(self.flagged),
        }


@dataclass(frozen=True)
class GradingResult:
    """Result returned by the grading boundary."""
    score: int
    total_questions: int
    correct_answers: Tuple[int, ...]
    result_id: Optional[str] = None

    @property
    def percentage(self) -> int:
        return compute_percentage(self.score, self.total_questions)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GradingResult":
        if not isinstance(data, dict):
            raise ValidationError(f"Grading result must be an object, got {type(data).__name__}")

        score = data.get('score')
        total = data.get('totalQuestions')
        correct = data.get('correctAnswers')

        if not _is_int(score) or not _is_int(total):
            raise ValidationError("Grading result must carry integer 'score' and 'totalQuestions'")
        if not isinstance(correct, list) or not all(_is_int(c) for c in correct):
            raise ValidationError("Grading result must carry a list of integer 'correctAnswers'")

        result_id = data.get('resultId')
        return cls(
            score=score,
            total_questions=total,
            correct_answers=tuple(correct),
            result_id=str(result_id) if result_id is not None else None,
        )


@dataclass(frozen=True)
class StudentResult:
    """One past attempt from the student's results history."""
    quiz_id: Optional[str]
    quiz_title: str
    score: int
    total_questions: int
    flagged_count: int = 0
    completed_at: Optional[datetime] = None

    @property
    def percentage(self) -> int:
        return compute_percentage(self.score, self.total_questions)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StudentResult":
        if not isinstance(data, dict):
            raise ValidationError(f"Result entry must be an object, got {type(data).__name__}")

        quiz = data.get('quizId')
        if isinstance(quiz, dict):
            quiz_id = quiz.get('_id', quiz.get('id'))
            title = quiz.get('title') or "Unknown Quiz"
        else:
            quiz_id = quiz
            title = "Unknown Quiz"

        completed_at = None
        raw_completed = data.get('completedAt')
        if isinstance(raw_completed, str):
            try:
                completed_at = datetime.fromisoformat(raw_completed.replace('Z', '+00:00'))
            except ValueError:
                completed_at = None

        score = data.get('score') or 0
        total = data.get('totalQuestions') or 0
        if not _is_int(score) or not _is_int(total):
            raise ValidationError(
                f"Result entry must carry integer 'score' and 'totalQuestions', got {score!r} and {total!r}",
                user_message="The quiz service sent a result that could not be read."
            )

        flagged = data.get('flaggedQuestions') or []
        return cls(
            quiz_id=str(quiz_id) if quiz_id is not None else None,
            quiz_title=title,
            score=score,
            total_questions=total,
            flagged_count=len(flagged) if isinstance(flagged, list) else 0,
            completed_at=completed_at,
        )


@dataclass(frozen=True)
class QuestionReview:
    """Review line for one question after grading."""
    index: int
    question_text: str
    options: Tuple[str, ...]
    selected_index: Optional[int]
    correct_index: int
    is_correct: bool
    is_unanswered: bool
    is_flagged: bool


@dataclass(frozen=True)
class ReviewView:
    """Full review payload handed to the results view."""
    quiz_id: str
    title: str
    score: int
    total_questions: int
    percentage: int
    bucket: str
    label: str
    correct_count: int
    flagged_count: int
    questions: Tuple[QuestionReview, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SessionView:
    """What the surrounding UI needs to draw an attempt in progress."""
    quiz_id: str
    title: str
    phase: AttemptPhase
    question_index: int
    question_count: int
    question_text: str
    options: Tuple[str, ...]
    selected_index: Optional[int]
    is_flagged: bool
    answered_count: int
    flagged_count: int
    flagged_indices: Tuple[int, ...]
    remaining_seconds: int
    remaining_display: str
    urgency: str
    error_message: Optional[str] = None


@dataclass(frozen=True)
class ResultsSummary:
    """Aggregate over a student's results history."""
    taken: int
    passed: int
    average_percentage: int