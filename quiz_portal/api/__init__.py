"""Async client for the quiz platform API."""

from .auth_service import AuthService
from .client import ApiClient, ApiError, NetworkError
from .question_service import QuestionService
from .quiz_service import QuizService
from .results_service import ResultsService
from .student_quiz_service import StudentQuizService
from .user_service import UserService

__all__ = [
    "ApiClient",
    "ApiError",
    "AuthService",
    "NetworkError",
    "QuestionService",
    "QuizService",
    "ResultsService",
    "StudentQuizService",
    "UserService",
]
