import logging
import os
import time
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional

import discord
from discord.ext import commands

from .config_manager import ConfigManager
from .embeds import (
    COLOR_INFO,
    COLOR_WARNING,
    build_course_quizzes_embed,
    build_loading_embed,
    build_message_embed,
    build_question_embed,
    build_results_embed,
    build_review_embed,
    build_status_embed,
)
from .errors import QuizAttemptError, ValidationError
from .models import AttemptPhase, ReviewView, SessionView
from .quiz_controller import QuizSessionController
from .quiz_service import QuizService
from .result_renderer import option_label, parse_option_label, summarize_results

logger = logging.getLogger(__name__)

# Below this many seconds every tick is drawn, regardless of the refresh interval
FINAL_COUNTDOWN_SECONDS = 10


class LiveAttempt:
    """A student's quiz attempt and the Discord message that shows it."""

    def __init__(self, user_id: int, refresh_seconds: int = 5):
        self.user_id = user_id
        self.refresh_seconds = refresh_seconds
        self.controller: Optional[QuizSessionController] = None
        self.message: Optional[discord.Message] = None
        self._last_refresh = 0.0

    async def refresh(self, view: Optional[SessionView], force: bool = False) -> None:
        """Redraw the question message, throttled to refresh_seconds unless forced."""
        if self.message is None or view is None or view.phase == AttemptPhase.GRADED:
            return

        now = time.monotonic()
        throttled = now - self._last_refresh < self.refresh_seconds
        if not force and throttled and view.remaining_seconds > FINAL_COUNTDOWN_SECONDS:
            return

        try:
            await self.message.edit(embed=build_question_embed(view))
            self._last_refresh = now
        except discord.HTTPException as e:
            logger.error(f"Failed to update quiz message for user {self.user_id}: {e}")

    async def show(self, embed: discord.Embed) -> None:
        if self.message is None:
            return
        try:
            await self.message.edit(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to update quiz message for user {self.user_id}: {e}")


class QuizBot(commands.Bot):
    """Discord bot for taking timed quizzes"""

    def __init__(self, config=None):
        # Slash commands only need the guilds intent
        intents = discord.Intents.none()
        intents.guilds = True

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}
        self.config_manager: Optional[ConfigManager] = None
        self.quiz_service: Optional[QuizService] = None
        # One live attempt per Discord user
        self.sessions: Dict[int, LiveAttempt] = {}

    async def setup_hook(self):
        """Called when the bot is starting up"""
        logger.info("Setting up bot components...")

        self.config_manager = ConfigManager()
        problems = self.config_manager.apply_config(self.app_config)
        for problem in problems:
            logger.warning(f"Configuration value rejected: {problem}")

        self.quiz_service = self.config_manager.create_quiz_service()
        await self.setup_commands()

        logger.info("Bot setup completed successfully")

    async def setup_commands(self):
        """Register all slash commands"""

        @self.tree.command(name="help", description="Display available commands and their descriptions")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="take", description="Start a timed quiz attempt")
        async def take_command(interaction: discord.Interaction, quiz_id: str):
            await self.handle_take(interaction, quiz_id)

        @self.tree.command(name="answer", description="Choose an option (A-D) for the current or given question")
        async def answer_command(interaction: discord.Interaction, option: str, question: Optional[int] = None):
            await self.handle_answer(interaction, option, question)

        @self.tree.command(name="clear", description="Clear your answer for the current or given question")
        async def clear_command(interaction: discord.Interaction, question: Optional[int] = None):
            await self.handle_clear(interaction, question)

        @self.tree.command(name="flag", description="Flag or unflag a question for review")
        async def flag_command(interaction: discord.Interaction, question: Optional[int] = None):
            await self.handle_flag(interaction, question)

        @self.tree.command(name="goto", description="Jump to a question number")
        async def goto_command(interaction: discord.Interaction, question: int):
            await self.handle_goto(interaction, question)

        @self.tree.command(name="next", description="Go to the next question")
        async def next_command(interaction: discord.Interaction):
            await self.handle_next(interaction)

        @self.tree.command(name="prev", description="Go to the previous question")
        async def prev_command(interaction: discord.Interaction):
            await self.handle_prev(interaction)

        @self.tree.command(name="submit", description="Submit your answers for grading")
        async def submit_command(interaction: discord.Interaction):
            await self.handle_submit(interaction)

        @self.tree.command(name="retry", description="Retry a submission that failed")
        async def retry_command(interaction: discord.Interaction):
            await self.handle_retry(interaction)

        @self.tree.command(name="status", description="Show your current attempt")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="abandon", description="Abandon your current attempt without submitting")
        async def abandon_command(interaction: discord.Interaction):
            await self.handle_abandon(interaction)

        @self.tree.command(name="quizzes", description="List the published quizzes of a course")
        async def quizzes_command(interaction: discord.Interaction, course_id: str):
            await self.handle_quizzes(interaction, course_id)

        @self.tree.command(name="results", description="Show your past quiz results")
        async def results_command(interaction: discord.Interaction):
            await self.handle_results(interaction)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        for live in list(self.sessions.values()):
            await self._release(live)
        await super().close()

    # -- session registry ------------------------------------------------

    async def _release(self, live: LiveAttempt) -> None:
        # A newer attempt by the same user may already own the slot
        if self.sessions.get(live.user_id) is live:
            del self.sessions[live.user_id]
        if live.controller is not None:
            await live.controller.close()
        logger.info(f"Released quiz session for user {live.user_id}")

    async def _on_graded(self, live: LiveAttempt, review: ReviewView) -> None:
        await live.show(build_review_embed(review))
        await self._release(live)

    async def _on_failed(self, live: LiveAttempt, error: Exception) -> None:
        logger.warning(f"Submission failed for user {live.user_id}: {error}")
        await live.refresh(live.controller.view(), force=True)

    def _get_live(self, interaction: discord.Interaction) -> Optional[LiveAttempt]:
        live = self.sessions.get(interaction.user.id)
        if live is None or live.controller is None or live.controller.store is None:
            return None
        return live

    async def _run_attempt_action(
        self,
        interaction: discord.Interaction,
        operation: str,
        action: Callable[[QuizSessionController], Awaitable[str]]
    ) -> None:
        """Run a UI event against the caller's attempt and confirm it ephemerally."""
        live = self._get_live(interaction)
        if live is None:
            await self.send_warning_response(interaction, "No quiz in progress. Start one with `/take <quiz_id>`.")
            return

        try:
            confirmation = await action(live.controller)
        except QuizAttemptError as e:
            logger.warning(f"{operation} rejected for user {interaction.user.id}: {e}")
            await self.send_error_response(interaction, e.user_message, "❌ Not Allowed")
            return

        await live.refresh(live.controller.view(), force=True)
        await self.send_info_response(interaction, confirmation, "✅ Done")

    # -- command handlers ------------------------------------------------

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        try:
            help_embed = discord.Embed(
                title="🎯 Timed Quiz Commands",
                description="Take timed multiple-choice quizzes and review your results",
                color=0x00ff00
            )
            help_embed.add_field(
                name="📚 Finding Quizzes",
                value=(
                    "`/quizzes <course_id>` - List the published quizzes of a course\n"
                    "`/take <quiz_id>` - Start a timed attempt\n"
                    "`/results` - Show your past results"
                ),
                inline=False
            )
            help_embed.add_field(
                name="📝 During an Attempt",
                value=(
                    "`/answer <A-D> [question]` - Choose an option\n"
                    "`/clear [question]` - Clear an answer\n"
                    "`/flag [question]` - Flag a question for review\n"
                    "`/next`, `/prev`, `/goto <question>` - Move between questions\n"
                    "`/status` - Show your progress\n"
                    "`/submit` - Submit for grading (happens automatically when time runs out)\n"
                    "`/retry` - Resend your answers if a submission failed\n"
                    "`/abandon` - Give up the attempt without submitting"
                ),
                inline=False
            )
            help_embed.add_field(
                name="⚙️ Current Settings",
                value=f"```\n{self.config_manager.get_settings_summary()}\n```",
                inline=False
            )
            help_embed.set_footer(text="Use slash commands to interact with the bot")

            await interaction.response.send_message(embed=help_embed, ephemeral=True)

        except discord.HTTPException as e:
            logger.error(f"Error in help command: {e}")
            await self.send_error_response(interaction, "Failed to display help", "❌ Help Error")

    async def handle_take(self, interaction: discord.Interaction, quiz_id: str):
        """Handle /take command: load the quiz and post the attempt message"""
        user_id = interaction.user.id
        if user_id in self.sessions:
            await self.send_warning_response(
                interaction,
                "You already have a quiz in progress. Finish it with `/submit` or use `/abandon`."
            )
            return

        settings = self.config_manager.get_settings()
        live = LiveAttempt(user_id, settings.display_refresh_seconds)
        live.controller = QuizSessionController(
            self.quiz_service.for_student(str(user_id)),
            quiz_id,
            on_change=live.refresh,
            on_graded=partial(self._on_graded, live),
            on_failed=partial(self._on_failed, live)
        )
        # Registered before the first await so a second /take is refused
        self.sessions[user_id] = live

        try:
            await interaction.response.send_message(embed=build_loading_embed(quiz_id))
            live.message = await interaction.original_response()
            loaded = await live.controller.load()
        except ValidationError as e:
            await live.show(build_message_embed("❌ Quiz Unavailable", e.user_message))
            await self._release(live)
            return
        except discord.HTTPException as e:
            logger.error(f"Failed to post quiz message for user {user_id}: {e}")
            await self._release(live)
            return

        if live.controller.is_closed:
            # Abandoned while loading
            return

        if not loaded:
            error = live.controller.load_error
            message = getattr(error, 'user_message', "Failed to load the quiz.")
            await live.show(build_message_embed("❌ Quiz Unavailable", f"{message}\nCheck the quiz id and try again."))
            await self._release(live)
            return

        logger.info(f"User {user_id} started quiz {quiz_id}")
        await live.refresh(live.controller.view(), force=True)

    async def handle_answer(self, interaction: discord.Interaction, option: str, question: Optional[int] = None):
        async def action(controller: QuizSessionController) -> str:
            option_index = parse_option_label(option)
            index = controller.store.current_question_index if question is None else question - 1
            await controller.select_option(option_index, index)
            return f"Answer {option_label(option_index)} recorded for question {index + 1}"

        await self._run_attempt_action(interaction, "answer", action)

    async def handle_clear(self, interaction: discord.Interaction, question: Optional[int] = None):
        async def action(controller: QuizSessionController) -> str:
            index = controller.store.current_question_index if question is None else question - 1
            await controller.clear_answer(index)
            return f"Answer cleared for question {index + 1}"

        await self._run_attempt_action(interaction, "clear", action)

    async def handle_flag(self, interaction: discord.Interaction, question: Optional[int] = None):
        async def action(controller: QuizSessionController) -> str:
            index = controller.store.current_question_index if question is None else question - 1
            flagged = await controller.toggle_flag(index)
            return f"Question {index + 1} {'flagged for review' if flagged else 'unflagged'}"

        await self._run_attempt_action(interaction, "flag", action)

    async def handle_goto(self, interaction: discord.Interaction, question: int):
        async def action(controller: QuizSessionController) -> str:
            index = await controller.go_to(question - 1)
            return f"Now on question {index + 1}"

        await self._run_attempt_action(interaction, "goto", action)

    async def handle_next(self, interaction: discord.Interaction):
        async def action(controller: QuizSessionController) -> str:
            index = await controller.next_question()
            return f"Now on question {index + 1}"

        await self._run_attempt_action(interaction, "next", action)

    async def handle_prev(self, interaction: discord.Interaction):
        async def action(controller: QuizSessionController) -> str:
            index = await controller.previous_question()
            return f"Now on question {index + 1}"

        await self._run_attempt_action(interaction, "prev", action)

    async def handle_submit(self, interaction: discord.Interaction):
        """Handle /submit command"""
        await self._submit(interaction, retry=False)

    async def handle_retry(self, interaction: discord.Interaction):
        """Handle /retry command"""
        await self._submit(interaction, retry=True)

    async def _submit(self, interaction: discord.Interaction, retry: bool):
        live = self._get_live(interaction)
        if live is None:
            await self.send_warning_response(interaction, "No quiz in progress. Start one with `/take <quiz_id>`.")
            return

        controller = live.controller
        try:
            await interaction.response.send_message("📨 Submitting your answers...", ephemeral=True)
            if retry:
                review = await controller.retry_submit()
            else:
                review = await controller.submit(reason="manual")
        except QuizAttemptError as e:
            logger.warning(f"Submission rejected for user {interaction.user.id}: {e}")
            await self.send_error_response(interaction, e.user_message, "❌ Submission Error")
            return
        except discord.HTTPException as e:
            logger.error(f"Discord error during submission for user {interaction.user.id}: {e}")
            return

        if review is not None:
            await self.send_info_response(
                interaction,
                f"Score: **{review.score}/{review.total_questions}** ({review.percentage}%) - {review.label}",
                "🏁 Submitted"
            )
        elif controller.phase == AttemptPhase.FAILED:
            error = controller.store.last_error
            await self.send_error_response(
                interaction,
                f"{getattr(error, 'user_message', 'Submission failed.')}\nYour answers are kept. Use `/retry`.",
                "❌ Submission Failed"
            )

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        live = self._get_live(interaction)
        if live is None:
            await self.send_info_response(interaction, "No quiz in progress. Start one with `/take <quiz_id>`.")
            return

        try:
            await interaction.response.send_message(embed=build_status_embed(live.controller.view()), ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in status command: {e}")

    async def handle_abandon(self, interaction: discord.Interaction):
        """Handle /abandon command"""
        live = self.sessions.get(interaction.user.id)
        if live is None:
            await self.send_info_response(interaction, "No quiz in progress.")
            return

        phase = live.controller.phase
        if phase == AttemptPhase.SUBMITTING:
            await self.send_warning_response(interaction, "Your answers are being graded. Please wait a moment.")
            return

        await self._release(live)
        await live.show(build_message_embed(
            "🛑 Attempt Abandoned", "This attempt was abandoned and not submitted.", COLOR_WARNING
        ))
        await self.send_info_response(interaction, "Your attempt was abandoned.", "🛑 Abandoned")

    async def handle_quizzes(self, interaction: discord.Interaction, course_id: str):
        """Handle /quizzes command"""
        try:
            quizzes = await self.quiz_service.list_course_quizzes(course_id)
        except QuizAttemptError as e:
            logger.warning(f"Failed to list quizzes for course {course_id}: {e}")
            await self.send_error_response(interaction, e.user_message, "❌ Quiz List Error")
            return

        try:
            await interaction.response.send_message(embed=build_course_quizzes_embed(course_id, quizzes))
        except discord.HTTPException as e:
            logger.error(f"Error in quizzes command: {e}")

    async def handle_results(self, interaction: discord.Interaction):
        """Handle /results command"""
        service = self.quiz_service.for_student(str(interaction.user.id))
        try:
            results = await service.list_student_results()
        except QuizAttemptError as e:
            logger.warning(f"Failed to list results for user {interaction.user.id}: {e}")
            await self.send_error_response(interaction, e.user_message, "❌ Results Error")
            return

        embed = build_results_embed(results, summarize_results(results))
        try:
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in results command: {e}")

    # -- responses -------------------------------------------------------

    async def _send_ephemeral(self, interaction: discord.Interaction, embed: discord.Embed) -> None:
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error(f"Failed to send response to user: {embed.title}")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        embed = build_message_embed(title, message)
        embed.set_footer(text="If this error persists, try using /help for available commands")
        await self._send_ephemeral(interaction, embed)

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        await self._send_ephemeral(interaction, build_message_embed(title, message, COLOR_INFO))

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        await self._send_ephemeral(interaction, build_message_embed(title, message, COLOR_WARNING))


async def run_bot(token: Optional[str] = None, config: Optional[Dict[str, Any]] = None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Timed Quiz Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
