"""
Discord embeds for quiz attempts, reviews and results history.
"""
from typing import Sequence

import discord

from .models import AttemptPhase, QuizDefinition, ResultsSummary, ReviewView, SessionView, StudentResult
from .result_renderer import (
    BUCKET_NEEDS_WORK,
    BUCKET_PASS,
    format_time,
    history_label,
    option_label,
)

COLOR_OK = 0x00ff00
COLOR_WARNING = 0xffaa00
COLOR_ERROR = 0xff0000
COLOR_INFO = 0x6699ff

URGENCY_COLORS = {"normal": COLOR_OK, "warning": COLOR_WARNING, "critical": COLOR_ERROR}
URGENCY_EMOJI = {"normal": "⏱️", "warning": "⚠️", "critical": "🚨"}
BUCKET_COLORS = {BUCKET_PASS: COLOR_OK, BUCKET_NEEDS_WORK: COLOR_WARNING}

# Discord rejects descriptions longer than 4096 characters
MAX_DESCRIPTION = 4000


def progress_bar(done: int, total: int, width: int = 10) -> str:
    if total <= 0:
        return "░" * width
    filled = round(width * done / total)
    return "▓" * filled + "░" * (width - filled)


def _truncate(lines: Sequence[str], limit: int = MAX_DESCRIPTION) -> str:
    text = ""
    for index, line in enumerate(lines):
        candidate = f"{text}\n{line}" if text else line
        if len(candidate) > limit:
            return f"{text}\n... and {len(lines) - index} more"
        text = candidate
    return text


def _question_numbers(indices: Sequence[int]) -> str:
    return ", ".join(str(i + 1) for i in indices)


def build_loading_embed(quiz_id: str) -> discord.Embed:
    return discord.Embed(
        title="⏳ Loading Quiz",
        description=f"Fetching quiz `{quiz_id}`...",
        color=COLOR_INFO
    )


def build_question_embed(view: SessionView) -> discord.Embed:
    """
    Draw the current question of an attempt in progress.

    The color follows the countdown urgency; the footer lists flagged
    questions so the student can revisit them before submitting.
    """
    embed = discord.Embed(
        title=f"🎯 {view.title} - Question {view.question_index + 1}/{view.question_count}",
        description=view.question_text,
        color=URGENCY_COLORS.get(view.urgency, COLOR_OK)
    )

    option_lines = []
    for index, option in enumerate(view.options):
        marker = "🔘" if index == view.selected_index else "⚪"
        option_lines.append(f"{marker} **{option_label(index)}.** {option}")
    embed.add_field(name="Options", value="\n".join(option_lines), inline=False)

    embed.add_field(
        name=f"{URGENCY_EMOJI.get(view.urgency, '⏱️')} Time Remaining",
        value=view.remaining_display,
        inline=True
    )
    embed.add_field(
        name="📊 Progress",
        value=(
            f"{progress_bar(view.answered_count, view.question_count)} "
            f"{view.answered_count}/{view.question_count} answered"
        ),
        inline=True
    )
    embed.add_field(
        name="🚩 Flagged",
        value="🚩 This question is flagged" if view.is_flagged else f"{view.flagged_count} flagged",
        inline=True
    )

    if view.phase == AttemptPhase.SUBMITTING:
        embed.set_footer(text="📨 Submitting your answers...")
    elif view.phase == AttemptPhase.FAILED:
        embed.set_footer(text=f"❌ {view.error_message or 'Submission failed'} Use /retry to try again.")
    elif view.flagged_indices:
        embed.set_footer(text=f"Review flagged questions before submitting: {_question_numbers(view.flagged_indices)}")
    elif view.urgency == "critical":
        embed.set_footer(text="⚡ Time running out! Answers are submitted automatically at 00:00")
    else:
        embed.set_footer(text="/answer to choose, /flag to mark for review, /next and /prev to move, /submit when done")

    return embed


def build_review_embed(review: ReviewView) -> discord.Embed:
    """Graded attempt: score, bucket label and a line per question."""
    embed = discord.Embed(
        title=f"🏁 {review.title} - Results",
        color=BUCKET_COLORS.get(review.bucket, COLOR_ERROR)
    )
    embed.add_field(
        name="Score",
        value=f"**{review.score}/{review.total_questions}** ({review.percentage}%)",
        inline=True
    )
    embed.add_field(name="Verdict", value=review.label, inline=True)
    if review.flagged_count:
        embed.add_field(name="🚩 Flagged", value=str(review.flagged_count), inline=True)

    lines = []
    for question in review.questions:
        if question.is_unanswered:
            status = "⬜"
            given = "no answer"
        elif question.is_correct:
            status = "✅"
            given = option_label(question.selected_index)
        else:
            status = "❌"
            given = option_label(question.selected_index)

        flag = " 🚩" if question.is_flagged else ""
        correct = option_label(question.correct_index) if question.correct_index >= 0 else "?"
        lines.append(f"{status} **{question.index + 1}.** {question.question_text}{flag}\n"
                     f"    your answer: {given}, correct: {correct}")

    embed.description = _truncate(lines)
    return embed


def build_course_quizzes_embed(course_id: str, quizzes: Sequence[QuizDefinition]) -> discord.Embed:
    embed = discord.Embed(
        title=f"📚 Quizzes for course {course_id}",
        color=COLOR_INFO
    )
    if not quizzes:
        embed.description = "No published quizzes for this course yet."
        return embed

    lines = [
        f"**{quiz.title}** (`{quiz.id}`) - {quiz.question_count} questions, "
        f"{quiz.time_limit_minutes} min"
        for quiz in quizzes
    ]
    embed.description = _truncate(lines)
    embed.set_footer(text="Start one with /take <quiz_id>")
    return embed


def build_results_embed(results: Sequence[StudentResult], summary: ResultsSummary) -> discord.Embed:
    """Results history with the taken/passed/average summary on top."""
    embed = discord.Embed(title="📈 My Quiz Results", color=COLOR_INFO)
    embed.add_field(name="Quizzes Taken", value=str(summary.taken), inline=True)
    embed.add_field(name="Passed", value=str(summary.passed), inline=True)
    embed.add_field(name="Average", value=f"{summary.average_percentage}%", inline=True)

    if not results:
        embed.description = "You have not completed any quizzes yet."
        return embed

    lines = []
    for result in results:
        label = history_label(result.score, result.total_questions)
        when = f" - {result.completed_at:%Y-%m-%d}" if result.completed_at else ""
        flagged = f", {result.flagged_count} flagged" if result.flagged_count else ""
        lines.append(
            f"**{result.quiz_title}**{when}\n"
            f"    {result.score}/{result.total_questions} ({result.percentage}%){flagged} - {label}"
        )
    embed.description = _truncate(lines)
    return embed


def build_status_embed(view: SessionView) -> discord.Embed:
    embed = discord.Embed(
        title=f"📊 {view.title}",
        description=f"Phase: **{view.phase.value}**",
        color=URGENCY_COLORS.get(view.urgency, COLOR_OK)
    )
    embed.add_field(name="Question", value=f"{view.question_index + 1}/{view.question_count}", inline=True)
    embed.add_field(name="Answered", value=f"{view.answered_count}/{view.question_count}", inline=True)
    embed.add_field(name="Time Remaining", value=format_time(view.remaining_seconds), inline=True)
    if view.flagged_indices:
        embed.add_field(name="🚩 Flagged", value=_question_numbers(view.flagged_indices), inline=False)
    return embed


def build_message_embed(title: str, message: str, color: int = COLOR_ERROR) -> discord.Embed:
    return discord.Embed(title=title, description=message, color=color)
