"""
Exception taxonomy for quiz attempts.

ValidationError and InvalidStateError signal a caller that broke the attempt
contract. NotFoundError, ConflictError and TransportError come from the quiz
service boundary.
"""
from typing import Optional


class QuizAttemptError(Exception):
    """Base exception for quiz attempt errors."""

    default_user_message = "Something went wrong with this quiz attempt."

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or self.default_user_message


class ValidationError(QuizAttemptError):
    """Raised when input has the wrong shape or is out of range."""
    default_user_message = "That input is not valid for this quiz."


class InvalidStateError(QuizAttemptError):
    """Raised when an operation is not legal in the attempt's current phase."""
    default_user_message = "This quiz can no longer be changed."


class NotFoundError(QuizAttemptError):
    """Raised when a quiz (or a graded result) does not exist or is unpublished."""
    default_user_message = "Quiz not found."


class ConflictError(QuizAttemptError):
    """Raised by the service when the same attempt is submitted twice."""
    default_user_message = "This attempt was already submitted."


class TransportError(QuizAttemptError):
    """Raised when the quiz service cannot be reached or fails."""
    default_user_message = "The quiz service is unavailable. Please try again."
