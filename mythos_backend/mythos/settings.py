import os
from dotenv import load_dotenv
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

REPLICATE_API_TOKEN = os.getenv("REPLICATE_API_TOKEN", "")
REPLICATE_MODEL_VERSION = os.getenv("REPLICATE_MODEL_VERSION", "")
REPLICATE_POLL_INTERVAL_MS = int(os.getenv("REPLICATE_POLL_INTERVAL_MS", "1500"))
REPLICATE_POLL_TIMEOUT_S = int(os.getenv("REPLICATE_POLL_TIMEOUT_S", "120"))

ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
ELEVENLABS_MODEL_ID = os.getenv("ELEVENLABS_MODEL_ID", "eleven_multilingual_v2")
ELEVENLABS_VOICE_ID_FEMALE = os.getenv("ELEVENLABS_VOICE_ID_FEMALE", "")
ELEVENLABS_VOICE_ID_MALE = os.getenv("ELEVENLABS_VOICE_ID_MALE", "")

# Narration is raw 16-bit little-endian PCM, mono
NARRATION_SAMPLE_RATE = 24000
NARRATION_CHANNELS = 1
NARRATION_MAX_ATTEMPTS = int(os.getenv("NARRATION_MAX_ATTEMPTS", "3"))
NARRATION_BACKOFF_BASE_S = float(os.getenv("NARRATION_BACKOFF_BASE_S", "1.0"))

# 0 means every page is dispatched at once
ASSET_CONCURRENCY = int(os.getenv("ASSET_CONCURRENCY", "0"))
MAX_PAGE_COUNT = int(os.getenv("MAX_PAGE_COUNT", "12"))

PLACEHOLDER_IMAGE_URL = os.getenv(
    "PLACEHOLDER_IMAGE_URL",
    "https://placehold.co/1024x1024/000000/FFFFFF?text=Visualizing+the+Story...",
)

MYTHOS_STORE_DIR = os.getenv(
    "MYTHOS_STORE_DIR", os.path.join(os.path.expanduser("~"), ".mythos", "stories")
)

# Comma-separated list of allowed origins for CORS (e.g., "https://app.vercel.app,https://www.example.com").
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if _allowed_origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = ["*"]

def has_all_keys() -> bool:
    required = {
        "OPENAI_API_KEY": OPENAI_API_KEY,
        "REPLICATE_API_TOKEN": REPLICATE_API_TOKEN,
        "ELEVENLABS_API_KEY": ELEVENLABS_API_KEY,
        "ELEVENLABS_VOICE_ID_FEMALE": ELEVENLABS_VOICE_ID_FEMALE,
        "ELEVENLABS_VOICE_ID_MALE": ELEVENLABS_VOICE_ID_MALE,
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        logger.warning(f"Missing API keys: {', '.join(missing)}")
    return not missing
