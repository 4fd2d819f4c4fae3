"""Constants used across Claudio.

This module defines shared constants to ensure consistency.
"""

MAIN_MODULE = "__main__"

# Hook server (not user-configurable unless overridden in claudio.yml)
HOOK_SERVER_HOST = "127.0.0.1"
HOOK_SERVER_PORT = 19876
HOOK_SERVER_START_TIMEOUT_S = 5.0
HOOK_SERVER_STOP_TIMEOUT_S = 5.0

# Permission requests are held open while the human decides. The agent kills
# the hook after HOOK_PERMISSION_TIMEOUT_S, so we must answer before that.
HOOK_PERMISSION_TIMEOUT_S = 120
PERMISSION_WAIT_TIMEOUT_S = 110.0

# Telegram
TELEGRAM_MESSAGE_MAX_CHARS = 4000
TELEGRAM_POLL_TIMEOUT_S = 30
TELEGRAM_POLL_BACKOFF_S = 5.0
TELEGRAM_PARSE_MODE = "HTML"
TRANSCRIPT_PREVIEW_MAX_CHARS = 1500
TOOL_COMMAND_PREVIEW_MAX_CHARS = 200

# Slots
MAX_SLOTS = 9
SESSION_REFRESH_INTERVAL_S = 5.0
IDLE_THRESHOLD_S = 60

# Headless runs
HEADLESS_STOP_GRACE_S = 5.0
AGENT_BINARY_NAME = "claude"

# Paths
DEFAULT_STATE_DIR = "~/.claudio"
DEFAULT_CONFIG_PATH = "~/.claudio/claudio.yml"
DEFAULT_AGENT_SETTINGS_PATH = "~/.claude/settings.json"
DEFAULT_AGENT_PROJECTS_DIR = "~/.claude/projects"
