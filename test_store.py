import json
import os
import threading

import httpx
import pytest

from conftest import run
from mythos.store import FileStoryStore, KVStoryStore, StoryStoreError, create_store, toggle_favorite


def test_save_and_read_back_whole_story(store, sample_story):
    run(store.save(sample_story))
    loaded = run(store.get(sample_story.id))
    assert loaded == sample_story


def test_records_use_camel_case_keys(store, sample_story):
    run(store.save(sample_story))
    with open(os.path.join(store.directory, f"{sample_story.id}.json"), encoding="utf-8") as f:
        record = json.load(f)
    assert {"imageUrl", "audioData", "imagePrompt"} <= set(record["pages"][0])
    assert {"createdAt", "isFavorite"} <= set(record)


def test_list_all_is_newest_first(store, sample_story):
    older = sample_story.model_copy(update={"id": "older", "created_at": 1_000})
    newer = sample_story.model_copy(update={"id": "newer", "created_at": 2_000})
    run(store.save(older))
    run(store.save(newer))
    assert [s.id for s in run(store.list_all())] == ["newer", "older"]


def test_list_all_on_a_fresh_store_is_empty(store):
    assert run(store.list_all()) == []


def test_save_replaces_the_previous_record(store, sample_story):
    run(store.save(sample_story))
    run(store.save(sample_story.model_copy(update={"title": "Renamed"})))
    stories = run(store.list_all())
    assert len(stories) == 1
    assert stories[0].title == "Renamed"


def test_page_count_survives_the_round_trip(store, sample_story):
    run(store.save(sample_story))
    loaded = run(store.get(sample_story.id))
    assert len(loaded.pages) == len(sample_story.pages)
    assert loaded.pages[1].audio_data is None


def test_deleting_an_unknown_id_changes_nothing(store, sample_story):
    run(store.save(sample_story))
    run(store.delete("does-not-exist"))
    run(store.delete("../../etc/passwd"))
    assert [s.id for s in run(store.list_all())] == [sample_story.id]


def test_delete_twice_is_fine(store, sample_story):
    run(store.save(sample_story))
    run(store.delete(sample_story.id))
    run(store.delete(sample_story.id))
    assert run(store.get(sample_story.id)) is None


def test_unsafe_ids_cannot_be_saved(store, sample_story):
    with pytest.raises(StoryStoreError):
        run(store.save(sample_story.model_copy(update={"id": "../escape"})))


def test_write_failure_is_reported(tmp_path, sample_story):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way")
    with pytest.raises(StoryStoreError):
        run(FileStoryStore(str(blocker)).save(sample_story))


def test_corrupt_record_is_reported(store, sample_story):
    os.makedirs(store.directory)
    with open(os.path.join(store.directory, "broken.json"), "w", encoding="utf-8") as f:
        f.write("{not json")
    with pytest.raises(StoryStoreError):
        run(store.get("broken"))


def test_toggle_favorite_rewrites_the_whole_record(store, sample_story):
    run(store.save(sample_story))
    assert run(toggle_favorite(store, sample_story.id)).is_favorite is True
    assert run(store.get(sample_story.id)).is_favorite is True
    assert run(toggle_favorite(store, sample_story.id)).is_favorite is False
    assert run(toggle_favorite(store, "missing")) is None


def test_survives_a_new_store_instance(store, sample_story):
    run(store.save(sample_story))
    assert run(FileStoryStore(store.directory).get(sample_story.id)) == sample_story


class FakeKV:
    """Just enough of the Vercel KV REST surface for the store."""

    def __init__(self, fail=False):
        self.data = {}
        self.sets = {}
        self.fail = fail

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            return httpx.Response(500, json={"error": "boom"})
        assert request.headers["Authorization"] == "Bearer token"
        command = request.url.path.rsplit("/", 1)[-1]
        args = json.loads(request.content)
        if command == "set":
            self.data[args[0]] = args[1]
            result = "OK"
        elif command == "get":
            result = self.data.get(args[0])
        elif command == "del":
            result = int(self.data.pop(args[0], None) is not None)
        elif command == "sadd":
            self.sets.setdefault(args[0], set()).add(args[1])
            result = 1
        elif command == "srem":
            self.sets.get(args[0], set()).discard(args[1])
            result = 1
        elif command == "smembers":
            result = sorted(self.sets.get(args[0], set()))
        else:
            return httpx.Response(400, json={"error": f"unknown command {command}"})
        return httpx.Response(200, json={"result": result})


def _kv_store(fake):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    return KVStoryStore("https://kv.example.com/", "token", client=client)


def test_kv_store_round_trip(sample_story):
    fake = FakeKV()
    store = _kv_store(fake)

    async def scenario():
        await store.save(sample_story)
        other = sample_story.model_copy(update={"id": "newer", "created_at": sample_story.created_at + 1})
        await store.save(other)
        listed = await store.list_all()
        await store.delete(sample_story.id)
        await store.delete(sample_story.id)
        remaining = await store.list_all()
        await store.close()
        return listed, remaining

    listed, remaining = run(scenario())
    assert [s.id for s in listed] == ["newer", sample_story.id]
    assert [s.id for s in remaining] == ["newer"]
    assert f"story:{sample_story.id}" not in fake.data


def test_kv_failures_propagate(sample_story):
    store = _kv_store(FakeKV(fail=True))
    with pytest.raises(StoryStoreError):
        run(store.save(sample_story))


def test_create_store_prefers_kv_when_configured(monkeypatch, tmp_path):
    monkeypatch.delenv("KV_REST_API_URL", raising=False)
    monkeypatch.delenv("KV_REST_API_TOKEN", raising=False)
    assert isinstance(create_store(), FileStoryStore)

    monkeypatch.setenv("KV_REST_API_URL", "https://kv.example.com")
    monkeypatch.setenv("KV_REST_API_TOKEN", "token")
    kv = create_store()
    assert isinstance(kv, KVStoryStore)
    run(kv.close())


def test_file_io_runs_off_the_event_loop_thread(store, sample_story, monkeypatch):
    threads = []
    real_replace = os.replace
    real_listdir = os.listdir

    def replace(src, dst):
        threads.append(threading.get_ident())
        return real_replace(src, dst)

    def listdir(path):
        threads.append(threading.get_ident())
        return real_listdir(path)

    monkeypatch.setattr(os, "replace", replace)
    monkeypatch.setattr(os, "listdir", listdir)

    async def save_and_list():
        await store.save(sample_story)
        return threading.get_ident(), await store.list_all()

    loop_thread, stories = run(save_and_list())
    assert [s.id for s in stories] == [sample_story.id]
    assert len(threads) >= 2
    assert loop_thread not in threads
