"""
CONFIGURATION MODULE
====================

PURPOSE:
  Central place for all IronChat gateway settings: upstream provider credentials,
  context store credentials, model names, timeouts, and the persona text that opens
  every system prompt. Values are read once when this module is imported; the
  gateway never hot-reloads them.

WHAT THIS FILE DOES:
  - Loads environment variables from .env (so API keys stay out of code).
  - Exposes OPENAI_API_KEY, OPENAI_BASE_URL, OPENAI_MODEL for the completion provider.
  - Exposes SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY for the context store
    (identity, quota counters, memory records).
  - Defines token tiers per response length, timeouts, and memory limits.
  - Holds the persona header that defines the assistant's voice.
  - missing_required_settings() lists what cold-start validation must refuse.

USAGE:
  Import what you need: `from config import OPENAI_MODEL, RESPONSE_LENGTH_MAX_TOKENS`
  All services import from here so behaviour is consistent.
"""

import os
import logging
from dotenv import load_dotenv


# -----------------------------------------------------------------------------
# LOGGING
# -----------------------------------------------------------------------------
logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# ENVIRONMENT
# -----------------------------------------------------------------------------
# Load environment variables from .env file (if it exists).
load_dotenv()


def _env_float(name: str, default: float) -> float:
    """Read a float from the environment; fall back to default when unset or unparsable."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid value for %s: %r (using %s)", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid value for %s: %r (using %s)", name, raw, default)
        return default


# ============================================================================
# UPSTREAM COMPLETION PROVIDER
# ============================================================================
# Any OpenAI-compatible chat-completions endpoint works. The primary answer is
# streamed; memory extraction uses a second, non-streaming call.

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_BASE_URL = (os.getenv("OPENAI_BASE_URL", "").strip() or "https://api.openai.com/v1").rstrip("/")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "").strip() or "gpt-4o-mini"
MEMORY_EXTRACTION_MODEL = os.getenv("MEMORY_EXTRACTION_MODEL", "").strip() or OPENAI_MODEL

# Sampling for the streamed answer.
CHAT_TEMPERATURE = 0.7

# max_tokens sent upstream for each response length preference.
RESPONSE_LENGTH_MAX_TOKENS = {
    "concise": 600,
    "balanced": 800,
    "detailed": 1200,
}
DEFAULT_RESPONSE_LENGTH = "balanced"

# Sampling for the extraction call; it only needs a short JSON array.
EXTRACTION_TEMPERATURE = 0.3
EXTRACTION_MAX_TOKENS = 500

# Timeouts (seconds). The read timeout bounds the gap between two upstream reads,
# so a stalled provider cannot hold a streaming request open forever.
UPSTREAM_CONNECT_TIMEOUT = _env_float("UPSTREAM_CONNECT_TIMEOUT", 10.0)
UPSTREAM_READ_TIMEOUT = _env_float("UPSTREAM_READ_TIMEOUT", 60.0)
EXTRACTION_TIMEOUT = _env_float("EXTRACTION_TIMEOUT", 30.0)

# ============================================================================
# CONTEXT STORE (SUPABASE)
# ============================================================================
# Holds auth users, the per-day message counter (check_message_limit /
# increment_message_count RPCs) and the user_memories table.

SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip()
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()

MEMORIES_TABLE = "user_memories"
CHECK_LIMIT_RPC = "check_message_limit"
INCREMENT_COUNT_RPC = "increment_message_count"

# ============================================================================
# QUOTA AND MEMORY LIMITS
# ============================================================================

FREE_DAILY_MESSAGE_LIMIT = _env_int("FREE_DAILY_MESSAGE_LIMIT", 5)
RATE_LIMIT_MESSAGE = (
    f"You've reached your daily limit of {FREE_DAILY_MESSAGE_LIMIT} free messages. "
    "Upgrade to Premium for unlimited conversations!"
)

MEMORY_RECALL_LIMIT = 20          # Most relevant memories injected into a prompt.
MEMORY_CONTENT_MAX_LENGTH = 200   # Longest memory content accepted from extraction.
MEMORY_DEDUP_PREFIX_LENGTH = 30   # Leading characters compared against stored memories.
DEFAULT_MEMORY_CONFIDENCE = 0.8

# ============================================================================
# SERVER
# ============================================================================

# Shutdown waits this long for detached work (memory extraction) before cancelling it.
BACKGROUND_DRAIN_TIMEOUT = _env_float("BACKGROUND_DRAIN_TIMEOUT", 30.0)

CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",")
    if origin.strip()
] or ["*"]

# ============================================================================
# PERSONA
# ============================================================================
# Opening of every system prompt. The conditional sections that follow it are
# assembled per request in ironchat/prompts.py.

PERSONA_PROMPT = """You are a straight-shooting Bible study assistant and accountability partner for men. You speak truth directly and call men to rise up in their faith.

COMMUNICATION STYLE:
- Be direct and to the point. Speak truth plainly without excessive softening or disclaimers
- Challenge men to rise up - call out complacency, passivity, and excuses when you see them
- Frame guidance around duty, responsibility, and action - not just feelings
- Use iron-sharpens-iron accountability - you are a brother pushing him to be better, not a therapist
- Do not coddle or enable weakness - speak hard truths with respect but without apology
- Be encouraging when earned, but do not hand out empty affirmations

BIBLICAL MASCULINITY:
- Call men to lead their homes, protect their families, and provide sacrificially
- Address spiritual warfare directly - this is a battle, not a support group
- Push toward discipline: prayer life, Scripture study, physical stewardship, financial responsibility
- Do not accept victim mentality - point back to personal responsibility and what he can control
- Remind him of his calling as a man of God - priest, prophet, and king of his household
- Speak to duty and honor, not just comfort and safety

"""


def missing_required_settings() -> list:
    """
    Return the names of settings the gateway cannot start without.

    The context store is required for every request (auth, quota), so its URL and
    key are checked at cold start. The upstream key is not listed: without it the
    server still starts and each chat request answers 500.
    """
    missing = []
    if not SUPABASE_URL:
        missing.append("SUPABASE_URL")
    if not SUPABASE_SERVICE_ROLE_KEY:
        missing.append("SUPABASE_SERVICE_ROLE_KEY")
    return missing
