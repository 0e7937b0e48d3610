"""
Resolve the media for every page of a drafted story.

Each page gets one illustration request and one narration request. The two
run side by side and neither waits on the other. Pages are fanned out
concurrently by default and always come back in draft order. A failed
illustration is replaced by the placeholder image, a failed narration leaves
the page silent; neither stops the remaining pages.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from .models import Genre, PageDraft, Story, StoryContent, StoryPage, StoryRequest, Voice
from .results import AssetFailed, AssetOk, AssetResult
from .settings import ASSET_CONCURRENCY, PLACEHOLDER_IMAGE_URL

logger = logging.getLogger(__name__)

ImageRequester = Callable[[str, Genre], Awaitable[AssetResult]]
NarrationRequester = Callable[[str, Voice], Awaitable[AssetResult]]
ProgressListener = Callable[[int, int], None]


class ProgressCounter:
    """Counts completed pages. Moves by one, never backwards, never past total."""

    def __init__(self, total: int, listener: Optional[ProgressListener] = None):
        if total < 0:
            raise ValueError("total must not be negative")
        self.total = total
        self.current = 0
        self._listener = listener

    def advance(self) -> int:
        if self.current >= self.total:
            raise ValueError(f"progress already at {self.current}/{self.total}")
        self.current += 1
        if self._listener is not None:
            try:
                self._listener(self.current, self.total)
            except Exception as e:
                # Observers must not be able to break assembly
                logger.warning(f"Progress listener failed at {self.current}/{self.total}: {e}")
        return self.current


class AssetAssembler:
    def __init__(
        self,
        image_requester: ImageRequester,
        narration_requester: NarrationRequester,
        placeholder_url: str = PLACEHOLDER_IMAGE_URL,
        max_concurrency: int = ASSET_CONCURRENCY,
        sequential: bool = False,
    ):
        if not placeholder_url:
            raise ValueError("placeholder_url must not be empty")
        self.image_requester = image_requester
        self.narration_requester = narration_requester
        self.placeholder_url = placeholder_url
        self.max_concurrency = max_concurrency
        self.sequential = sequential

    def _image_url(self, index: int, result: AssetResult) -> str:
        if isinstance(result, AssetOk) and result.value:
            return result.value
        reason = result.reason if isinstance(result, AssetFailed) else "empty image"
        logger.warning(f"Image for page {index + 1} unavailable ({reason}); using placeholder")
        return self.placeholder_url

    def _audio_data(self, index: int, result: AssetResult) -> Optional[str]:
        if isinstance(result, AssetOk) and result.value:
            return result.value
        if isinstance(result, AssetFailed):
            kind = "rate limited" if result.rate_limited else result.reason
            logger.warning(f"Narration for page {index + 1} unavailable ({kind}); page stays silent")
        return None

    async def assemble_page(self, index: int, draft: PageDraft, genre: Genre, voice: Voice) -> StoryPage:
        image_result, audio_result = await asyncio.gather(
            self.image_requester(draft.image_prompt, genre),
            self.narration_requester(draft.text, voice),
        )
        return StoryPage(
            text=draft.text,
            image_prompt=draft.image_prompt,
            image_url=self._image_url(index, image_result),
            audio_data=self._audio_data(index, audio_result),
        )

    async def assemble(
        self,
        drafts: Sequence[PageDraft],
        genre: Genre,
        voice: Voice,
        progress: Optional[ProgressCounter] = None,
    ) -> List[StoryPage]:
        progress = progress or ProgressCounter(len(drafts))
        logger.info(f"Assembling assets for {len(drafts)} pages"
                    f"{' sequentially' if self.sequential else ''}")

        if self.sequential:
            pages = []
            for i, draft in enumerate(drafts):
                pages.append(await self.assemble_page(i, draft, genre, voice))
                progress.advance()
            return pages

        limit = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency > 0 else None

        async def run(i: int, draft: PageDraft) -> StoryPage:
            if limit is None:
                page = await self.assemble_page(i, draft, genre, voice)
            else:
                async with limit:
                    page = await self.assemble_page(i, draft, genre, voice)
            progress.advance()
            return page

        # gather keeps positional order regardless of completion order
        return list(await asyncio.gather(*(run(i, d) for i, d in enumerate(drafts))))

    async def assemble_story(
        self,
        content: StoryContent,
        req: StoryRequest,
        progress: Optional[ProgressCounter] = None,
        story_id: Optional[str] = None,
    ) -> Story:
        fields = dict(
            title=content.title,
            genre=req.genre.value,
            mood=req.mood.value,
            style=req.style.value,
            plot=req.plot,
            cast=list(req.cast),
            is_generating_images=True,
        )
        if story_id:
            fields["id"] = story_id
        story = Story(**fields)
        story.pages = await self.assemble(content.pages, req.genre, req.narration_voice(), progress)
        story.is_generating_images = False
        return story


def default_assembler() -> AssetAssembler:
    from .replicate_client import request_image
    from .elevenlabs_client import request_narration
    return AssetAssembler(request_image, request_narration)
