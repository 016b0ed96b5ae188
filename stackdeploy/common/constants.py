"""Application constants."""

USER_AGENT = "stackdeploy/0.3 (+health-probe)"
STAGES = (
    "prepare",
    "build",
    "launch",
    "cleanup",
)
COMMANDS = ("run", "validate")
EXIT_SUCCESS = 0
EXIT_PREPARE_FAIL = 10
EXIT_BUILD_FAIL = 20
EXIT_LAUNCH_FAIL = 30
EXIT_CANCELLED = 40
EXIT_CODE_BY_STAGE = {
    "prepare": EXIT_PREPARE_FAIL,
    "build": EXIT_BUILD_FAIL,
    "launch": EXIT_LAUNCH_FAIL,
}
DEFAULT_SECRET_IDS = ("nexus_user", "nexus_pass")
BUILT_IMAGE_PLACEHOLDER = "@built"
RESTART_POLICIES = ("no", "on-failure", "always", "unless-stopped")
HEALTH_CHECK_TYPES = ("backend", "http", "command")
DEPENDENCY_FAILURE_POLICIES = ("leave_running", "tear_down")
REDACTED = "***"
JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "stage",
    "service",
    "event",
    "status",
    "attempt",
    "duration_ms",
    "error_code",
    "message",
)
