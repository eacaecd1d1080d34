"""Static metadata describing QuizPortal."""

APP_NAME = "QuizPortal"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "QuizPortal is the client for an online quiz platform. Students take timed quizzes "
    "and review published results; lecturers author quizzes, upload question banks and "
    "publish scores."
)
