# mindscape/constants.py

APP_NAME = "MindScape"
__version__ = "1.0.0"
SCHEMA_VERSION = "2025-11-02.1"
DEFAULT_LOG_FILENAME = "app.log"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_LOG_BACKUP_COUNT = 5
DEFAULT_CHAT_TIMEOUT = 120
WELCOME_MESSAGE = (
    "Hello! I'm your MindScape AI assistant. "
    "How can I support your wellness journey today?"
)
