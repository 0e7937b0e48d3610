import json
from types import SimpleNamespace

import pytest

from conftest import run
from mythos import llm
from mythos.llm import StoryContentError, build_system_prompt, parse_story_content, request_story_content
from mythos.models import CastMember, StoryRequest


def _raw(n, title="X"):
    return {"title": title, "pages": [{"text": f"t{i}", "imagePrompt": f"p{i}"} for i in range(n)]}


def test_valid_response_becomes_drafts():
    content = parse_story_content(json.dumps(_raw(2)), 2)
    assert content.title == "X"
    assert [(p.text, p.image_prompt) for p in content.pages] == [("t0", "p0"), ("t1", "p1")]


def test_empty_pages_for_five_page_request_is_an_error():
    with pytest.raises(StoryContentError):
        parse_story_content({"title": "X", "pages": []}, 5)


@pytest.mark.parametrize(
    "raw",
    [
        "not json at all",
        "[]",
        {"title": "X"},
        {"title": "X", "pages": "three"},
        {"title": "", "pages": [{"text": "t", "imagePrompt": "p"}]},
        {"title": "X", "pages": [{"text": "t"}]},
        {"title": "X", "pages": [{"text": 3, "imagePrompt": "p"}]},
        {"pages": [{"text": "t", "imagePrompt": "p"}]},
    ],
)
def test_malformed_responses_are_rejected(raw):
    with pytest.raises(StoryContentError):
        parse_story_content(raw, 1)


def test_too_many_pages_is_also_an_error():
    with pytest.raises(StoryContentError):
        parse_story_content(_raw(4), 3)


def test_prompt_names_the_whole_configuration():
    req = StoryRequest(page_count=4, cast=[CastMember(name="Ada", role="pilot"), CastMember(name="  ")])
    prompt = build_system_prompt(req)
    assert "4-page story" in prompt
    assert "Genre: Fantasy, Mood: Epic, Visual Theme: Oil Painting" in prompt
    assert "Cast: Ada (a pilot)." in prompt
    assert "Create a unique, compelling original narrative." in prompt
    assert '"imagePrompt"' in prompt


def test_plot_hook_is_used_when_given():
    prompt = build_system_prompt(StoryRequest(plot="A clockwork heart stops"))
    assert "Plot Hook: A clockwork heart stops" in prompt


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _fake_client(monkeypatch, completions):
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    monkeypatch.setattr(llm, "_get_client", lambda: client)


def test_request_story_content_asks_for_json(monkeypatch):
    completions = FakeCompletions(content=json.dumps(_raw(3)))
    _fake_client(monkeypatch, completions)

    content = run(request_story_content(StoryRequest(page_count=3)))

    assert len(content.pages) == 3
    assert completions.kwargs["response_format"] == {"type": "json_object"}
    assert completions.kwargs["messages"][0]["role"] == "system"


def test_transport_errors_become_content_errors(monkeypatch):
    _fake_client(monkeypatch, FakeCompletions(error=ConnectionError("offline")))
    with pytest.raises(StoryContentError):
        run(request_story_content(StoryRequest(page_count=3)))


def test_short_response_from_service_is_rejected(monkeypatch):
    _fake_client(monkeypatch, FakeCompletions(content=json.dumps({"title": "X", "pages": []})))
    with pytest.raises(StoryContentError):
        run(request_story_content(StoryRequest(page_count=5)))
