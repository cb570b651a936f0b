from __future__ import annotations

DEFAULT_REST_SECONDS = 60
DEFAULT_CUE_WINDOW = 3
DEFAULT_TICK_SECONDS = 1.0

# Bannister impulse-response time constants (days).
FITNESS_TIME_CONSTANT = 42
FATIGUE_TIME_CONSTANT = 7
STRESS_SCALE = 10.0
MIN_CAPACITY = 1.0

DEFAULT_COACH_MODEL = "gemini-2.5-flash"
LOGS_FILENAME = "workout_logs.json"
SNAPSHOT_FILENAME = "active_session.json"
