"""Network configuration constants for the quiz client."""

import os

DEFAULT_API_BASE_URL: str = os.getenv("QUIZ_PORTAL_API_URL", "http://127.0.0.1:8000/api")
REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("QUIZ_PORTAL_TIMEOUT", "10"))

PRACTICE_SERVER_HOST: str = os.getenv("QUIZ_PORTAL_PRACTICE_HOST", "127.0.0.1")
PRACTICE_SERVER_PORT: int = int(os.getenv("QUIZ_PORTAL_PRACTICE_PORT", "8000"))
PRACTICE_API_PREFIX: str = "/api"
PRACTICE_TOKEN_TTL_SECONDS: float = float(os.getenv("QUIZ_PORTAL_TOKEN_TTL", str(24 * 60 * 60)))
