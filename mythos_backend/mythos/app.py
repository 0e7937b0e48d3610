from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
import logging
import asyncio
import traceback
import uuid
from typing import Dict, List, Optional

from pydantic import BaseModel

# Ensure .env is loaded before importing modules that initialize API clients
from .settings import has_all_keys, ALLOWED_ORIGINS
from .assembler import default_assembler
from .audio import AudioDecodeError
from .exporter import export_story_pdf
from .llm import StoryContentError
from .models import GenerationProgress, Story, StoryRequest, View
from .orchestrator import run_pipeline
from .reader import NoNarrationError, ReaderClosedError, ReaderSession
from .store import StoryStoreError, create_store, toggle_favorite
from .utils import export_filename

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Finished jobs kept around for polling; older ones are dropped first
MAX_FINISHED_JOBS = 100

TERMINAL_STATUSES = ("succeeded", "failed")


class OpenRequest(BaseModel):
    story_id: str


class PageRequest(BaseModel):
    index: int


class ViewRequest(BaseModel):
    view: View


class JobRecord:
    def __init__(self, job_id: str, total: int):
        self.job_id = job_id
        self.status = "queued"
        self.error: Optional[str] = None
        self.progress = GenerationProgress(total=total)
        self.story_id: Optional[str] = None
        self.task: Optional[asyncio.Task] = None

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def record_progress(self, progress: GenerationProgress):
        # Counts only move forward even if updates arrive out of order
        if progress.current >= self.progress.current:
            self.progress = progress


class AppState:
    """Everything the running service owns, created at startup and released at shutdown."""

    def __init__(self, store=None, assembler=None, content_requester=None):
        self.store = store or create_store()
        self.assembler = assembler or default_assembler()
        self.content_requester = content_requester
        self.reader = ReaderSession()
        self.jobs: Dict[str, JobRecord] = {}

    def add_job(self, job: JobRecord) -> None:
        self.jobs[job.job_id] = job
        finished = [j.job_id for j in self.jobs.values() if j.finished]
        for job_id in finished[:max(0, len(finished) - MAX_FINISHED_JOBS)]:
            del self.jobs[job_id]

    async def generate(self, req: StoryRequest, job: Optional[JobRecord] = None) -> Story:
        kwargs = {}
        if self.content_requester is not None:
            kwargs["content_requester"] = self.content_requester
        return await run_pipeline(
            req,
            self.store,
            self.assembler,
            on_progress=job.record_progress if job else None,
            job_id=job.job_id if job else None,
            **kwargs,
        )

    async def close(self):
        self.reader.close()
        for job in self.jobs.values():
            if job.task is not None and not job.task.done():
                job.task.cancel()
        await self.store.close()


def create_app(state_factory=AppState) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.mythos = state_factory()
        try:
            yield
        finally:
            await app.state.mythos.close()

    app = FastAPI(title="Mythos Story Backend", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["POST", "GET", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    def _state(request: Request) -> AppState:
        return request.app.state.mythos

    async def _load(state: AppState, story_id: str) -> Story:
        try:
            story = await state.store.get(story_id)
        except StoryStoreError as e:
            raise HTTPException(503, f"Could not read story: {e}")
        if story is None:
            raise HTTPException(404, "story not found")
        return story

    @app.get("/health")
    def health():
        keys_ok = has_all_keys()
        logger.info(f"Health check: API keys present = {keys_ok}")
        return {"ok": True, "has_keys": keys_ok}

    @app.post("/v1/stories:generate")
    async def generate_story(req: StoryRequest, request: Request):
        state = _state(request)
        try:
            story = await state.generate(req)
        except StoryContentError as e:
            raise HTTPException(422, f"We encountered an issue crafting your story: {e}")
        except StoryStoreError as e:
            raise HTTPException(503, f"Your story was created but could not be saved: {e}")
        return story.model_dump(by_alias=True)

    async def _background_generate(state: AppState, job: JobRecord, req: StoryRequest):
        try:
            logger.info(f"Starting background generation for job {job.job_id}")
            job.status = "running"
            story = await state.generate(req, job)
            job.story_id = story.id
            job.status = "succeeded"
        except Exception as e:
            logger.error(f"Background generation failed for job {job.job_id}: {e}")
            logger.error(f"Full traceback: {traceback.format_exc()}")
            job.error = str(e)
            job.status = "failed"

    @app.post("/v1/stories:start")
    async def start_job(req: StoryRequest, request: Request):
        state = _state(request)
        job = JobRecord(uuid.uuid4().hex, req.page_count)
        state.add_job(job)
        job.task = asyncio.create_task(_background_generate(state, job, req))
        return {"job_id": job.job_id, "status": job.status}

    @app.get("/v1/jobs/{job_id}")
    async def job_status(job_id: str, request: Request):
        job = _state(request).jobs.get(job_id)
        if not job:
            raise HTTPException(404, "job not found")
        return {
            "job_id": job.job_id,
            "status": job.status,
            "error": job.error,
            "story_id": job.story_id,
            "progress": job.progress.model_dump(by_alias=True),
        }

    @app.get("/v1/stories")
    async def list_stories(request: Request, favorites: bool = False):
        try:
            stories: List[Story] = await _state(request).store.list_all()
        except StoryStoreError as e:
            raise HTTPException(503, f"Could not load stories: {e}")
        if favorites:
            stories = [s for s in stories if s.is_favorite]
        return [s.model_dump(by_alias=True) for s in stories]

    @app.get("/v1/stories/{story_id}")
    async def get_story(story_id: str, request: Request):
        return (await _load(_state(request), story_id)).model_dump(by_alias=True)

    @app.delete("/v1/stories/{story_id}", status_code=204)
    async def delete_story(story_id: str, request: Request):
        state = _state(request)
        try:
            await state.store.delete(story_id)
        except StoryStoreError as e:
            raise HTTPException(503, f"Could not delete story: {e}")
        state.reader.forget(story_id)
        return Response(status_code=204)

    @app.post("/v1/stories/{story_id}:favorite")
    async def favorite_story(story_id: str, request: Request):
        try:
            story = await toggle_favorite(_state(request).store, story_id)
        except StoryStoreError as e:
            raise HTTPException(503, f"Could not update story: {e}")
        if story is None:
            raise HTTPException(404, "story not found")
        return story.model_dump(by_alias=True)

    @app.get("/v1/stories/{story_id}/export.pdf")
    async def export_story(story_id: str, request: Request):
        story = await _load(_state(request), story_id)
        pdf = await export_story_pdf(story)
        headers = {"Content-Disposition": f'attachment; filename="{export_filename(story.title)}"'}
        return Response(pdf, media_type="application/pdf", headers=headers)

    # --- Reader: the one view that may own narration playback ---

    @app.get("/v1/reader")
    async def reader_state(request: Request):
        return _state(request).reader.snapshot()

    @app.post("/v1/reader:open")
    async def reader_open(body: OpenRequest, request: Request):
        state = _state(request)
        state.reader.open(await _load(state, body.story_id))
        return state.reader.snapshot()

    @app.post("/v1/reader/page")
    async def reader_page(body: PageRequest, request: Request):
        reader = _state(request).reader
        try:
            reader.go_to_page(body.index)
        except ReaderClosedError as e:
            raise HTTPException(409, str(e))
        except IndexError as e:
            raise HTTPException(400, str(e))
        return reader.snapshot()

    @app.post("/v1/reader/view")
    async def reader_view(body: ViewRequest, request: Request):
        reader = _state(request).reader
        reader.switch_view(body.view)
        return reader.snapshot()

    @app.post("/v1/reader/narration:play")
    async def reader_play(request: Request):
        reader = _state(request).reader
        try:
            playback = reader.play_narration()
        except ReaderClosedError as e:
            raise HTTPException(409, str(e))
        except NoNarrationError as e:
            raise HTTPException(404, str(e))
        except AudioDecodeError as e:
            raise HTTPException(422, f"Narration could not be decoded: {e}")
        return Response(playback.wav, media_type="audio/wav")

    @app.post("/v1/reader/narration:stop")
    async def reader_stop(request: Request):
        reader = _state(request).reader
        reader.stop_narration()
        return reader.snapshot()

    @app.post("/v1/reader/narration:complete")
    async def reader_complete(request: Request, page_index: Optional[int] = None):
        reader = _state(request).reader
        reader.narration_finished(page_index)
        return reader.snapshot()

    return app


app = create_app()
