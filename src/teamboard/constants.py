STATE_DIR_NAME = ".teamboard"
CONFIG_FILE = "config.yaml"
STORE_FILE = "board.yaml"
LOCK_FILE = "board.lock"
EVENTS_FILE = "events.jsonl"
NOTIFICATIONS_FILE = "notifications.jsonl"

STORE_VERSION = 1
LOCK_TIMEOUT_SECONDS = 30

DEFAULT_API_BASE = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_CONFLICT_WINDOW_MINUTES = 5
DEFAULT_IMPORT_PAGE_SIZE = 30
DEFAULT_IMPORT_MAX_PAGES = 10

DEFAULT_COLUMN_TITLE = "To Do"
SYNC_FOOTER = "\n\n---\n*Synced from Task #{task_id}*"

ENV_WEBHOOK_SECRET = "TEAMBOARD_WEBHOOK_SECRET"
ENV_API_BASE = "TEAMBOARD_GITHUB_API_BASE"
ENV_LOG_LEVEL = "TEAMBOARD_LOG_LEVEL"
