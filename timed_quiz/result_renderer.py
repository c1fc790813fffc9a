"""
Read-only projections of quiz attempts for display.

Nothing here mutates its inputs or talks to the network, so every function
can be called any number of times with the same result.
"""
from typing import Iterable, Optional, Sequence

from .errors import ValidationError
from .models import (
    OPTIONS_PER_QUESTION,
    GradingResult,
    QuestionReview,
    QuizDefinition,
    ResultsSummary,
    ReviewView,
    StudentResult,
    compute_percentage,
)

PASS_THRESHOLD = 70
NEEDS_WORK_THRESHOLD = 40

BUCKET_PASS = "pass"
BUCKET_NEEDS_WORK = "needs_work"
BUCKET_FAIL = "fail"

BUCKET_LABELS = {
    BUCKET_PASS: "Great work!",
    BUCKET_NEEDS_WORK: "Keep studying!",
    BUCKET_FAIL: "Don't give up, try again!",
}

HISTORY_LABELS = {
    BUCKET_PASS: "🎉 Passed",
    BUCKET_NEEDS_WORK: "📖 Needs Work",
    BUCKET_FAIL: "❌ Failed",
}

CRITICAL_SECONDS = 60
WARNING_SECONDS = 300


def score_bucket(percentage: int) -> str:
    """Bucket a percentage: >=70 pass, 40-69 needs work, below 40 fail."""
    if percentage >= PASS_THRESHOLD:
        return BUCKET_PASS
    if percentage >= NEEDS_WORK_THRESHOLD:
        return BUCKET_NEEDS_WORK
    return BUCKET_FAIL


def bucket_label(bucket: str) -> str:
    return BUCKET_LABELS[bucket]


def history_label(score: int, total_questions: int) -> str:
    """Label for a past attempt, bucketed on the unrounded percentage so 69.5% is not a pass."""
    exact = (score / total_questions) * 100 if total_questions else 0.0
    if exact >= PASS_THRESHOLD:
        return HISTORY_LABELS[BUCKET_PASS]
    if exact >= NEEDS_WORK_THRESHOLD:
        return HISTORY_LABELS[BUCKET_NEEDS_WORK]
    return HISTORY_LABELS[BUCKET_FAIL]


def option_label(index: int) -> str:
    """Letter shown next to an option: 0 -> A, 1 -> B, ..."""
    return chr(ord('A') + index)


def parse_option_label(label: str) -> int:
    """
    Inverse of option_label, case-insensitive.

    Raises:
        ValidationError: If the label is not a single letter A..D
    """
    text = (label or "").strip().upper()
    if len(text) != 1 or not 'A' <= text < option_label(OPTIONS_PER_QUESTION):
        raise ValidationError(
            f"Unknown option label {label!r}",
            user_message=f"Pick an option from A to {option_label(OPTIONS_PER_QUESTION - 1)}."
        )
    return ord(text) - ord('A')


def format_time(seconds: int) -> str:
    """Format seconds as MM:SS."""
    seconds = max(0, int(seconds))
    minutes, secs = divmod(seconds, 60)
    return f"{minutes:02d}:{secs:02d}"


def timer_urgency(seconds: int) -> str:
    if seconds < CRITICAL_SECONDS:
        return "critical"
    if seconds < WARNING_SECONDS:
        return "warning"
    return "normal"


def render_review(
    definition: QuizDefinition,
    answers: Sequence[Optional[int]],
    flagged: Iterable[int],
    result: GradingResult
) -> ReviewView:
    """
    Build the review of a graded attempt.

    Args:
        definition: Quiz that was attempted
        answers: Recorded answer per question, None where unanswered
        flagged: Indices the student flagged for review
        result: Grading result with the released correct answers

    Returns:
        ReviewView with one QuestionReview per question
    """
    flagged_set = frozenset(flagged)
    reviews = []

    for index, question in enumerate(definition.questions):
        selected = answers[index] if index < len(answers) else None
        correct = result.correct_answers[index] if index < len(result.correct_answers) else -1
        reviews.append(QuestionReview(
            index=index,
            question_text=question.question_text,
            options=tuple(question.options),
            selected_index=selected,
            correct_index=correct,
            is_correct=selected is not None and selected == correct,
            is_unanswered=selected is None,
            is_flagged=index in flagged_set,
        ))

    percentage = compute_percentage(result.score, result.total_questions)
    bucket = score_bucket(percentage)

    return ReviewView(
        quiz_id=definition.id,
        title=definition.title,
        score=result.score,
        total_questions=result.total_questions,
        percentage=percentage,
        bucket=bucket,
        label=bucket_label(bucket),
        correct_count=sum(1 for review in reviews if review.is_correct),
        flagged_count=len(flagged_set),
        questions=tuple(reviews),
    )


def summarize_results(results: Sequence[StudentResult]) -> ResultsSummary:
    """Totals for the results history: attempts taken, passed, average percentage."""
    if not results:
        return ResultsSummary(taken=0, passed=0, average_percentage=0)

    percentages = [
        (r.score / r.total_questions) * 100 if r.total_questions else 0.0
        for r in results
    ]
    average = sum(percentages) / len(percentages)
    return ResultsSummary(
        taken=len(results),
        passed=sum(1 for p in percentages if p >= PASS_THRESHOLD),
        average_percentage=int(average + 0.5),
    )
