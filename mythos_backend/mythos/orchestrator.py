import uuid, logging
from typing import Awaitable, Callable, Optional

from langgraph.graph import StateGraph, END

from .assembler import AssetAssembler, ProgressCounter, default_assembler
from .llm import request_story_content
from .models import GenerationProgress, OrchestrationState, Story, StoryContent, StoryRequest

logger = logging.getLogger(__name__)

ContentRequester = Callable[[StoryRequest], Awaitable[StoryContent]]
ProgressCallback = Callable[[GenerationProgress], None]


def _report(on_progress: Optional[ProgressCallback], current: int, total: int, step: str):
    if on_progress is not None:
        on_progress(GenerationProgress(current=current, total=total, step=step))


def build_graph(
    store,
    assembler: AssetAssembler,
    content_requester: ContentRequester = request_story_content,
    on_progress: Optional[ProgressCallback] = None,
):
    async def node_story_content(state: OrchestrationState) -> dict:
        logger.info(f"Generating story content for job {state.job_id}")
        _report(on_progress, 0, state.request.page_count, "Formulating narrative arc...")
        content = await content_requester(state.request)
        logger.info(f"Story content generated: '{content.title}' with {len(content.pages)} pages")
        return {"content": content}

    async def node_assets(state: OrchestrationState) -> dict:
        assert state.content
        total = len(state.content.pages)
        _report(on_progress, 0, total, "Crafting illustrations...")

        def page_done(current: int, total: int):
            _report(on_progress, current, total, f"Chapter {current} of {total} complete...")

        story = await assembler.assemble_story(
            state.content, state.request, ProgressCounter(total, page_done), story_id=state.job_id
        )
        return {"story": story}

    async def node_persist(state: OrchestrationState) -> dict:
        assert state.story
        _report(on_progress, len(state.story.pages), len(state.story.pages), "Binding the chronicle...")
        await store.save(state.story)
        logger.info(f"Saved story {state.story.id}")
        return {}

    g = StateGraph(OrchestrationState)
    g.add_node("story_content", node_story_content)
    g.add_node("assets", node_assets)
    g.add_node("persist", node_persist)
    g.set_entry_point("story_content")
    g.add_edge("story_content", "assets")
    g.add_edge("assets", "persist")
    g.add_edge("persist", END)
    return g.compile()


async def run_pipeline(
    req: StoryRequest,
    store,
    assembler: Optional[AssetAssembler] = None,
    content_requester: ContentRequester = request_story_content,
    on_progress: Optional[ProgressCallback] = None,
    job_id: Optional[str] = None,
) -> Story:
    """Draft, illustrate, narrate and save one story. Returns the saved story."""
    state = OrchestrationState(job_id=job_id or uuid.uuid4().hex, request=req)
    graph = build_graph(store, assembler or default_assembler(), content_requester, on_progress)
    try:
        logger.info(f"Starting pipeline for job {state.job_id}")
        final_state = await graph.ainvoke(state)
    except Exception as e:
        logger.error(f"Pipeline failed for job {state.job_id}: {str(e)}")
        raise

    # LangGraph hands back a dict of channel values
    if not isinstance(final_state, OrchestrationState):
        final_state = OrchestrationState.model_validate(dict(final_state))
    logger.info(f"Pipeline completed for job {state.job_id}")
    return final_state.story
