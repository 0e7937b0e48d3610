import logging
from typing import Optional, Tuple

from .audio import NarrationPlayer, Playback
from .models import Story, View

logger = logging.getLogger(__name__)


class NoNarrationError(LookupError):
    pass


class ReaderClosedError(LookupError):
    pass


class ReaderSession:
    """What the person is looking at, plus the one narration player they own.

    Anything that changes what is on screen stops narration first.
    """

    def __init__(self, player: Optional[NarrationPlayer] = None):
        self.player = player or NarrationPlayer()
        self.view = View.GENERATOR
        self.story: Optional[Story] = None
        self.page_index = 0

    def open(self, story: Story) -> None:
        self.player.stop()
        self.story = story
        self.page_index = 0
        self.view = View.READER
        logger.info(f"Opened story {story.id} in the reader")

    def switch_view(self, view: View) -> None:
        self.player.stop()
        self.view = view

    def go_to_page(self, index: int) -> int:
        story = self._require_story()
        if not 0 <= index < len(story.pages):
            raise IndexError(f"page {index} out of range for {len(story.pages)} pages")
        self.player.stop()
        self.page_index = index
        return index

    def next_page(self) -> int:
        story = self._require_story()
        return self.go_to_page(min(self.page_index + 1, len(story.pages) - 1))

    def previous_page(self) -> int:
        self._require_story()
        return self.go_to_page(max(self.page_index - 1, 0))

    def current_clip(self) -> Tuple[str, int]:
        story = self._require_story()
        return (story.id, self.page_index)

    def play_narration(self) -> Playback:
        story = self._require_story()
        page = story.pages[self.page_index]
        if not page.audio_data:
            raise NoNarrationError(f"page {self.page_index + 1} of '{story.title}' has no narration")
        return self.player.play(self.current_clip(), page.audio_data)

    def stop_narration(self) -> None:
        self.player.stop()

    def narration_finished(self, page_index: Optional[int] = None) -> bool:
        if self.story is None:
            return False
        clip = self.current_clip() if page_index is None else (self.story.id, page_index)
        return self.player.complete(clip)

    def forget(self, story_id: str) -> None:
        """Leave the reader if the open story was deleted."""
        if self.story is not None and self.story.id == story_id:
            self.player.stop()
            self.story = None
            self.page_index = 0
            self.view = View.LIBRARY

    def close(self) -> None:
        self.player.close()
        self.story = None
        self.page_index = 0
        self.view = View.GENERATOR

    def snapshot(self) -> dict:
        return {
            "view": self.view.value,
            "storyId": self.story.id if self.story else None,
            "pageIndex": self.page_index,
            "narration": self.player.state.value,
            "activeClip": list(self.player.active_clip) if self.player.active_clip else None,
        }

    def _require_story(self) -> Story:
        if self.story is None or not self.story.pages:
            raise ReaderClosedError("no story is open in the reader")
        return self.story
