import logging
import os

from dotenv import load_dotenv

load_dotenv()

# OpenRouter-compatible chat completions endpoint
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
OPENROUTER_REFERER = os.getenv("OPENROUTER_REFERER", "https://revvel-skill-runner.manus.space")
OPENROUTER_TITLE = os.getenv("OPENROUTER_TITLE", "Revvel Skill Runner")

# Hard upper bound for a single model call, in seconds
LLM_CALL_TIMEOUT = float(os.getenv("LLM_CALL_TIMEOUT", "30"))

# Candidates tried per routed call before giving up
LLM_MAX_ATTEMPTS = int(os.getenv("LLM_MAX_ATTEMPTS", "3"))

# free-first / paid-first / uncensored-only / censored-only
DEFAULT_POLICY = os.getenv("LLM_DEFAULT_POLICY", "free-first")

# Optional YAML file replacing the built-in model catalog
MODEL_CATALOG_FILE = os.getenv("MODEL_CATALOG_FILE", "")

# Project root: directory containing skillheal/ package (works from any cwd)
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
LOG_FILE = os.path.join(PROJECT_ROOT, "logs", "skillheal.log")
HEALING_DB_PATH = os.getenv("HEALING_DB_PATH", os.path.join(PROJECT_ROOT, "data", "healing.db"))

# Pause between disabling and re-enabling a work item on restart
RESTART_PAUSE_SECONDS = float(os.getenv("RESTART_PAUSE_SECONDS", "1.0"))

# Escalation delivery via Telegram (optional)
TG_BOT_KEY = os.getenv("TG_BOT_KEY", "")
TG_ESCALATION_CHAT_ID = os.getenv("TG_ESCALATION_CHAT_ID", "")

# Healing policy constants
BACKOFF_CAP_MINUTES = 120
PATTERN_WINDOW_DAYS = 7
PATTERN_THRESHOLD = 3
FINGERPRINT_PREFIX_LENGTH = 100
SOURCE_SNIPPET_LIMIT = 1000
KNOWN_FIX_CONFIDENCE = 0.9


# Read version from VERSION file
def _get_version() -> str:
    version_file = os.path.join(PROJECT_ROOT, "VERSION")
    try:
        with open(version_file, "r") as f:
            return f.read().strip()
    except FileNotFoundError:
        return "0.0.0"  # Fallback if VERSION file doesn't exist


VERSION = _get_version()


def setup_logging(level: int = logging.INFO) -> None:
    os.makedirs(os.path.dirname(LOG_FILE), exist_ok=True)
    logging.basicConfig(
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        level=level,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(LOG_FILE, encoding="utf-8"),
        ],
    )
