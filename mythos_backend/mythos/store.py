"""
Durable story persistence.

Stories are saved whole; a save replaces the previous record for the same id
and the last writer wins. Deleting an id that is not stored is not an error.
Two backends share the same interface: Vercel KV (Upstash REST) when it is
configured, and one JSON file per story on local disk otherwise.
"""
import os
import asyncio
import re
import json
import httpx
import logging
import tempfile
from typing import List, Optional

from pydantic import ValidationError

from .models import Story
from .settings import MYTHOS_STORE_DIR

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class StoryStoreError(RuntimeError):
    pass


def _by_recency(stories: List[Story]) -> List[Story]:
    return sorted(stories, key=lambda s: s.created_at, reverse=True)


def _decode(raw, where: str) -> Story:
    try:
        return Story.model_validate_json(raw)
    except ValidationError as e:
        raise StoryStoreError(f"Corrupt story record {where}: {e}") from e


class FileStoryStore:
    def __init__(self, directory: str = MYTHOS_STORE_DIR):
        self.directory = directory

    def _path(self, story_id: str) -> Optional[str]:
        if not _SAFE_ID.match(story_id or ""):
            return None
        return os.path.join(self.directory, f"{story_id}.json")

    async def save(self, story: Story) -> None:
        path = self._path(story.id)
        if path is None:
            raise StoryStoreError(f"Invalid story id: {story.id!r}")
        await asyncio.to_thread(self._write, story, path)
        logger.info(f"Stored story {story.id} in {self.directory}")

    def _write(self, story: Story, path: str) -> None:
        try:
            os.makedirs(self.directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(story.model_dump_json(by_alias=True))
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            logger.error(f"Failed to store story {story.id}: {e}")
            raise StoryStoreError(f"Failed to store story {story.id}: {e}") from e

    async def get(self, story_id: str) -> Optional[Story]:
        path = self._path(story_id)
        if path is None:
            return None
        raw = await asyncio.to_thread(self._read, path)
        if raw is None:
            return None
        return _decode(raw, path)

    @staticmethod
    def _read(path: str) -> Optional[str]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoryStoreError(f"Failed to read {path}: {e}") from e

    async def list_all(self) -> List[Story]:
        stories = []
        for name in await asyncio.to_thread(self._names):
            if name.endswith(".json"):
                story = await self.get(name[:-len(".json")])
                if story is not None:
                    stories.append(story)
        return _by_recency(stories)

    def _names(self) -> List[str]:
        if not os.path.isdir(self.directory):
            return []
        try:
            return sorted(os.listdir(self.directory))
        except OSError as e:
            raise StoryStoreError(f"Failed to list stories: {e}") from e

    async def delete(self, story_id: str) -> None:
        path = self._path(story_id)
        if path is None:
            return
        if await asyncio.to_thread(self._remove, path):
            logger.info(f"Deleted story {story_id}")

    @staticmethod
    def _remove(path: str) -> bool:
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoryStoreError(f"Failed to delete {path}: {e}") from e

    async def close(self) -> None:
        pass


class KVStoryStore:
    INDEX_KEY = "stories"

    def __init__(self, url: str, token: str, client: Optional[httpx.AsyncClient] = None):
        self.kv_rest_api_url = url.rstrip("/")
        self.kv_rest_api_token = token
        self._client = client or httpx.AsyncClient(timeout=10)

    def _headers(self):
        return {
            "Authorization": f"Bearer {self.kv_rest_api_token}",
            "Content-Type": "application/json"
        }

    async def _command(self, command: str, *args):
        try:
            response = await self._client.post(
                f"{self.kv_rest_api_url}/{command}",
                headers=self._headers(),
                json=list(args),
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"KV {command} failed: {e}")
            raise StoryStoreError(f"KV {command} failed: {e}") from e
        if isinstance(data, dict) and data.get("error"):
            raise StoryStoreError(f"KV {command} failed: {data['error']}")
        return data.get("result") if isinstance(data, dict) else None

    @staticmethod
    def _key(story_id: str) -> str:
        return f"story:{story_id}"

    async def save(self, story: Story) -> None:
        await self._command("set", self._key(story.id), story.model_dump_json(by_alias=True))
        await self._command("sadd", self.INDEX_KEY, story.id)
        logger.info(f"Stored story {story.id} in KV")

    async def get(self, story_id: str) -> Optional[Story]:
        raw = await self._command("get", self._key(story_id))
        if not raw:
            return None
        return _decode(raw, self._key(story_id))

    async def list_all(self) -> List[Story]:
        ids = await self._command("smembers", self.INDEX_KEY) or []
        stories = []
        for story_id in ids:
            story = await self.get(story_id)
            if story is not None:
                stories.append(story)
        return _by_recency(stories)

    async def delete(self, story_id: str) -> None:
        await self._command("del", self._key(story_id))
        await self._command("srem", self.INDEX_KEY, story_id)
        logger.info(f"Deleted story {story_id} from KV")

    async def close(self) -> None:
        await self._client.aclose()


async def toggle_favorite(store, story_id: str) -> Optional[Story]:
    story = await store.get(story_id)
    if story is None:
        return None
    updated = story.model_copy(update={"is_favorite": not story.is_favorite})
    await store.save(updated)
    return updated


def create_store():
    url = os.getenv("KV_REST_API_URL")
    token = os.getenv("KV_REST_API_TOKEN")
    if url and token:
        logger.info("KV storage enabled")
        return KVStoryStore(url, token)
    logger.warning(f"KV storage not configured - storing stories under {MYTHOS_STORE_DIR}")
    return FileStoryStore(MYTHOS_STORE_DIR)
