"""Quiz-related constants shared across the client, the session controller and the practice server."""

AWAY_LIMIT_SECONDS: int = 180
COUNTDOWN_TICK_SECONDS: float = 1.0
LOW_TIME_WARNING_MINUTES: int = 5
DEFAULT_QUIZ_DURATION_MINUTES: int = 60
DEFAULT_QUESTION_POINTS: int = 1

# Student option selection is single-choice for every question type until
# true multi-select answering is switched on.
ALLOW_MULTI_SELECT: bool = False

MIN_PASSWORD_LENGTH: int = 6

TIME_EXPIRED_MESSAGE: str = "Your quiz was automatically submitted because the time expired."
AWAY_TOO_LONG_MESSAGE: str = (
    "Your quiz was automatically submitted because you were away from the quiz "
    "for more than 3 minutes."
)
LOAD_FAILED_MESSAGE: str = "Failed to load quiz attempt"
ALREADY_SUBMITTED_MESSAGE: str = "This quiz attempt has already been submitted."
SUBMIT_FAILED_MESSAGE: str = "Failed to submit quiz"
RESULTS_PENDING_MESSAGE: str = "Your results will be available once published by your lecturer."

GOOD_SCORE_PERCENT: int = 70
FAIR_SCORE_PERCENT: int = 50
