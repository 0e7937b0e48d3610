import asyncio

import pytest

from mythos.assembler import AssetAssembler
from mythos.audio import encode_pcm16
from mythos.models import CastMember, Genre, Mood, PageDraft, Story, StoryContent, StoryPage, StoryRequest
from mythos.results import AssetFailed, AssetOk
from mythos.store import FileStoryStore

PLACEHOLDER = "https://placehold.co/1024x1024/000000/FFFFFF?text=Visualizing+the+Story..."


def run(coro):
    return asyncio.run(coro)


class FakeImages:
    """Image requester that succeeds unless told which prompts to fail."""

    def __init__(self, fail_prompts=(), fail_all=False, delays=None):
        self.fail_prompts = set(fail_prompts)
        self.fail_all = fail_all
        self.delays = delays or {}
        self.calls = []

    async def __call__(self, prompt, genre):
        self.calls.append((prompt, genre))
        await asyncio.sleep(self.delays.get(prompt, 0))
        if self.fail_all or prompt in self.fail_prompts:
            return AssetFailed("image service down")
        return AssetOk(f"data:image/png;base64,{prompt}")


class FakeNarration:
    def __init__(self, rate_limited_texts=(), fail_all=False):
        self.rate_limited_texts = set(rate_limited_texts)
        self.fail_all = fail_all
        self.calls = []

    async def __call__(self, text, voice):
        self.calls.append((text, voice))
        if self.fail_all:
            return AssetFailed("tts down")
        if text in self.rate_limited_texts:
            return AssetFailed("429", rate_limited=True)
        return AssetOk(encode_pcm16([len(text), -len(text)]))


def make_drafts(n):
    return [PageDraft(text=f"Page {i + 1} text", image_prompt=f"scene-{i + 1}") for i in range(n)]


@pytest.fixture
def drafts():
    return make_drafts(3)


@pytest.fixture
def story_request():
    return StoryRequest(
        genre=Genre.FANTASY,
        mood=Mood.WHIMSICAL,
        page_count=3,
        cast=[CastMember(name="Lyra", role="cartographer")],
        plot="A map that redraws itself",
    )


@pytest.fixture
def content():
    return StoryContent(title="The Living Map", pages=make_drafts(3))


@pytest.fixture
def fake_images():
    return FakeImages()


@pytest.fixture
def fake_narration():
    return FakeNarration()


@pytest.fixture
def assembler(fake_images, fake_narration):
    return AssetAssembler(fake_images, fake_narration, placeholder_url=PLACEHOLDER)


@pytest.fixture
def store(tmp_path):
    return FileStoryStore(str(tmp_path / "stories"))


@pytest.fixture
def sample_story():
    return Story(
        title="The Living Map",
        genre="Fantasy",
        mood="Whimsical",
        style="Water Color",
        cast=[CastMember(name="Lyra", role="cartographer")],
        pages=[
            StoryPage(text="**Lyra** woke.", image_prompt="a girl waking", image_url=PLACEHOLDER,
                      audio_data=encode_pcm16([0, 16384, -16384, 32767, -32768])),
            StoryPage(text="The map moved.", image_prompt="a moving map", image_url=PLACEHOLDER),
        ],
    )


class RecordingOutput:
    """Playback output that remembers every clip it started and whether it was stopped."""

    def __init__(self):
        self.started = []

    def start(self, buffer):
        handle = RecordingPlayback(buffer)
        self.started.append(handle)
        return handle


class RecordingPlayback:
    def __init__(self, buffer):
        self.buffer = buffer
        self.stop_calls = 0

    @property
    def playing(self):
        return self.stop_calls == 0

    def stop(self):
        self.stop_calls += 1
