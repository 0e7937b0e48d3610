import os, json, logging
from typing import Any

from pydantic import ValidationError

from .models import StoryContent, StoryRequest, describe_cast
from .prompts import SYSTEM_PROMPT_TEMPLATE, STORY_SCHEMA, USER_PROMPT, DEFAULT_PLOT, DEFAULT_CAST
from .settings import OPENAI_MODEL

logger = logging.getLogger(__name__)

_client = None


class StoryContentError(RuntimeError):
    """The content service answered with something that is not a usable story."""


def _get_client():
    global _client
    if _client is None:
        from openai import AsyncOpenAI
        api_key = os.getenv("OPENAI_API_KEY", "")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is not set; please configure your .env")
        _client = AsyncOpenAI(api_key=api_key)
    return _client


def build_system_prompt(req: StoryRequest) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(
        page_count=req.page_count,
        genre=req.genre.value,
        mood=req.mood.value,
        style=req.style.value,
        cast=describe_cast(req.cast) or DEFAULT_CAST,
        plot=req.plot.strip() or DEFAULT_PLOT,
        schema=STORY_SCHEMA,
    )


def parse_story_content(raw: Any, page_count: int) -> StoryContent:
    """Validate a generation response. Anything short of a complete story is an error."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise StoryContentError(f"Story response is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise StoryContentError("Story response must be a JSON object")
    if not isinstance(raw.get("pages"), list):
        raise StoryContentError("Story response has no pages")
    try:
        content = StoryContent.model_validate(raw)
    except ValidationError as e:
        raise StoryContentError(f"Story response has the wrong shape: {e}") from e
    if not content.title.strip():
        raise StoryContentError("Story response has an empty title")
    if len(content.pages) != page_count:
        raise StoryContentError(
            f"Expected {page_count} pages but the story has {len(content.pages)}"
        )
    return content


async def request_story_content(req: StoryRequest) -> StoryContent:
    logger.info(f"Calling OpenAI API to generate a {req.page_count}-page {req.genre.value} story")
    messages = [
        {"role": "system", "content": build_system_prompt(req)},
        {"role": "user", "content": USER_PROMPT},
    ]
    try:
        client = _get_client()
        resp = await client.chat.completions.create(
            model=OPENAI_MODEL,
            messages=messages,
            temperature=0.9,
            response_format={"type": "json_object"},
        )
        content = resp.choices[0].message.content
    except Exception as e:
        logger.error(f"OpenAI API call failed: {str(e)}")
        raise StoryContentError(f"Story generation request failed: {e}") from e
    logger.info("Successfully received response from OpenAI")
    return parse_story_content(content or "", req.page_count)
