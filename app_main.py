"""Application entry point: runs the QuizPortal practice server."""

from __future__ import annotations

import asyncio
from logging import Logger
import time

from quiz_portal.api.auth_service import AuthService
from quiz_portal.api.client import ApiClient
from quiz_portal.api.student_quiz_service import StudentQuizService
from quiz_portal.constants.about import APP_NAME, APP_VERSION
from quiz_portal.constants.network_constants import (
    PRACTICE_API_PREFIX,
    PRACTICE_SERVER_HOST,
    PRACTICE_SERVER_PORT,
)
from quiz_portal.core.errors import ApiError
from quiz_portal.server.practice_server import start_practice_server
from quiz_portal.server.practice_store import (
    DEMO_PASSWORD,
    DEMO_STUDENT_EMAIL,
    PracticeStore,
    seed_demo_content,
)
from quiz_portal.utils.logging_config import configure_logging

_STARTUP_TIMEOUT_SECONDS = 10.0


async def _check_connection(base_url: str, logger: Logger) -> None:
    """Ping the server and sign in as the demo student."""
    async with ApiClient(base_url) as client:
        status = await AuthService(client).test_connection()
        logger.info("Server says: %s", status.get("message"))
        client.authenticate(await AuthService(client).login(DEMO_STUDENT_EMAIL, DEMO_PASSWORD))
        quizzes = await StudentQuizService(client).list_published_quizzes()
        logger.info("Demo student sees %d published quiz(zes)", len(quizzes))


def main() -> None:
    """Initialize logging, seed demo data and serve the practice API until interrupted."""
    logger = configure_logging()
    logger.info("Starting %s %s practice server...", APP_NAME, APP_VERSION)

    store = PracticeStore()
    quiz = seed_demo_content(store)
    logger.info("Seeded demo quiz '%s' (%d questions)", quiz.title, len(quiz.questions))

    thread, server = start_practice_server(store, host=PRACTICE_SERVER_HOST, port=PRACTICE_SERVER_PORT)
    deadline = time.monotonic() + _STARTUP_TIMEOUT_SECONDS
    while not server.started and thread.is_alive() and time.monotonic() < deadline:
        time.sleep(0.1)
    if not server.started:
        logger.error("Practice server did not start")
        return

    base_url = f"http://{PRACTICE_SERVER_HOST}:{PRACTICE_SERVER_PORT}{PRACTICE_API_PREFIX}"
    try:
        asyncio.run(_check_connection(base_url, logger))
    except ApiError as exc:
        logger.error("Connection check failed: %s", exc)
    logger.info("Practice API available at %s (Ctrl+C to stop)", base_url)

    try:
        thread.join()
    except KeyboardInterrupt:
        server.should_exit = True
        thread.join(timeout=_STARTUP_TIMEOUT_SECONDS)


if __name__ == "__main__":
    main()
