import time
import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .settings import MAX_PAGE_COUNT


class Genre(str, Enum):
    FANTASY = "Fantasy"
    SCI_FI = "Sci-Fi"
    MYSTERY = "Mystery"
    HORROR = "Horror"
    ADVENTURE = "Adventure"
    FAIRYTALE = "Fairytale"
    MYTHOLOGY = "Mythology"
    STEAMPUNK = "Steampunk"
    NOIR = "Noir"
    ROMANCE = "Romance"


class Mood(str, Enum):
    EPIC = "Epic"
    FUNNY = "Funny"
    SPOOKY = "Spooky"
    WHIMSICAL = "Whimsical"
    DARK = "Dark"
    HOPEFUL = "Hopeful"
    MELANCHOLIC = "Melancholic"
    TENSE = "Tense"


class StoryStyle(str, Enum):
    OIL_PAINTING = "Oil Painting"
    CINEMATIC = "Cinematic"
    WATER_COLOR = "Water Color"
    PENCIL_SKETCH = "Pencil Sketch"
    CYBERPUNK = "Cyberpunk"
    VINTAGE = "Vintage"
    CONCEPT_ART = "Concept Art"


class Voice(str, Enum):
    FEMALE = "Female"
    MALE = "Male"


class View(str, Enum):
    GENERATOR = "generator"
    LIBRARY = "library"
    READER = "reader"


_MALE_MOODS = {Mood.EPIC, Mood.DARK, Mood.SPOOKY, Mood.TENSE}


def voice_for_mood(mood: Mood) -> Voice:
    return Voice.MALE if mood in _MALE_MOODS else Voice.FEMALE


def _short_id() -> str:
    return uuid.uuid4().hex[:8]


def _now_ms() -> int:
    return int(time.time() * 1000)


class CamelModel(BaseModel):
    """Serialises to the camelCase shape the browser stores."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CastMember(CamelModel):
    id: str = Field(default_factory=_short_id)
    name: str = ""
    role: str = ""


def describe_cast(cast: List[CastMember]) -> str:
    return ", ".join(f"{c.name} (a {c.role or 'character'})" for c in cast if c.name.strip())


class PageDraft(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    text: str
    image_prompt: str


class StoryPage(CamelModel):
    text: str
    image_prompt: str
    image_url: str = Field(min_length=1)
    # base64 of raw 16-bit PCM; None means the page has no narration
    audio_data: Optional[str] = None


class StoryContent(CamelModel):
    title: str
    pages: List[PageDraft]


class StoryRequest(CamelModel):
    genre: Genre = Genre.FANTASY
    mood: Mood = Mood.EPIC
    style: StoryStyle = StoryStyle.OIL_PAINTING
    page_count: int = Field(5, ge=1, le=MAX_PAGE_COUNT)
    cast: List[CastMember] = Field(default_factory=list)
    plot: str = ""
    voice: Optional[Voice] = None

    def narration_voice(self) -> Voice:
        return self.voice or voice_for_mood(self.mood)


class Story(CamelModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    title: str
    genre: str
    mood: str
    style: str
    plot: str = ""
    cast: List[CastMember] = Field(default_factory=list)
    pages: List[StoryPage] = Field(default_factory=list)
    created_at: int = Field(default_factory=_now_ms)
    is_favorite: bool = False
    is_generating_images: bool = False


class GenerationProgress(CamelModel):
    current: int = 0
    total: int = 0
    step: str = "Drafting..."


class OrchestrationState(BaseModel):
    job_id: str
    request: StoryRequest
    content: Optional[StoryContent] = None
    story: Optional[Story] = None
