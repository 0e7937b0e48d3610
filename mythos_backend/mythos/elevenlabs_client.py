import os, base64, httpx, asyncio, logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from .models import Voice
from .results import AssetFailed, AssetOk, AssetResult
from .settings import (
    ELEVENLABS_MODEL_ID,
    NARRATION_BACKOFF_BASE_S,
    NARRATION_MAX_ATTEMPTS,
    NARRATION_SAMPLE_RATE,
)
from .utils import strip_markdown

logger = logging.getLogger(__name__)

# Raw 16-bit little-endian PCM, mono
OUTPUT_FORMAT = f"pcm_{NARRATION_SAMPLE_RATE}"


class NarrationRateLimited(RuntimeError):
    """ElevenLabs kept answering 429 after every attempt the policy allowed."""


def exponential_backoff(attempt: int) -> float:
    return NARRATION_BACKOFF_BASE_S * (2 ** attempt)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = NARRATION_MAX_ATTEMPTS
    backoff: Callable[[int], float] = exponential_backoff
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


def _voice_id(voice: Voice) -> str:
    env_name = f"ELEVENLABS_VOICE_ID_{voice.name}"
    vid = os.getenv(env_name, "")
    if not vid:
        raise RuntimeError(f"{env_name} is not set; please configure your .env")
    return vid

def _headers():
    api_key = os.getenv("ELEVENLABS_API_KEY", "")
    if not api_key:
        raise RuntimeError("ELEVENLABS_API_KEY is not set; please configure your .env")
    return {
        "xi-api-key": api_key,
        "Content-Type": "application/json"
    }

async def tts_to_pcm(text: str, voice: Voice, policy: RetryPolicy = RetryPolicy()) -> bytes:
    payload = {
        "text": text,
        "model_id": ELEVENLABS_MODEL_ID,
        "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
    }
    url = f"https://api.elevenlabs.io/v1/text-to-speech/{_voice_id(voice)}"

    for attempt in range(policy.max_attempts):
        async with httpx.AsyncClient(timeout=60) as client:
            r = await client.post(url, headers=_headers(), json=payload,
                                  params={"output_format": OUTPUT_FORMAT})
        if r.status_code != 429:
            r.raise_for_status()
            return r.content
        if attempt + 1 >= policy.max_attempts:
            break
        wait_time = policy.backoff(attempt)
        logger.warning(f"ElevenLabs rate limited (429). Retrying in {wait_time} seconds... "
                       f"(attempt {attempt + 1}/{policy.max_attempts})")
        await policy.sleep(wait_time)

    raise NarrationRateLimited(f"ElevenLabs rate limit exceeded after {policy.max_attempts} attempts")

async def request_narration(text: str, voice: Voice, policy: RetryPolicy = RetryPolicy()) -> AssetResult:
    """Narrate one page. Never raises: failures come back as AssetFailed."""
    spoken = strip_markdown(text).strip()
    if not spoken:
        return AssetFailed("nothing to narrate")
    try:
        pcm = await tts_to_pcm(spoken, voice, policy)
    except NarrationRateLimited as e:
        logger.warning(str(e))
        return AssetFailed(str(e), rate_limited=True)
    except Exception as e:
        logger.warning(f"Narration generation failed: {e}")
        return AssetFailed(str(e) or type(e).__name__)
    if not pcm:
        return AssetFailed("empty audio payload")
    return AssetOk(base64.b64encode(pcm).decode("ascii"))
