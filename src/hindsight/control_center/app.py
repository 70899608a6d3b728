import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from hindsight.domain.errors import CompletionError
from hindsight.observability.structured_log import log_json
from hindsight.providers.completion import CompletionProvider
from hindsight.services.error_codes import describe_error
from hindsight.services.extraction import extract_entities_and_facts, generate_insights

logger = logging.getLogger(__name__)


class CompleteRequest(BaseModel):
    prompt: str
    system_prompt: Optional[str] = None


class ExtractRequest(BaseModel):
    content: str
    bank_context: Optional[str] = None
    action_context: Optional[str] = None


class MemoryItem(BaseModel):
    content: str
    type: str = "world"
    score: Optional[float] = None


class ReflectRequest(BaseModel):
    query: str
    memories: List[MemoryItem] = Field(default_factory=list)
    generate_insights: bool = True
    include_memories: bool = False


def _completion_http_error(exc: CompletionError) -> HTTPException:
    entry = describe_error(exc)
    return HTTPException(
        status_code=entry.http_status,
        detail={"code": entry.code, "title": entry.title, "message": str(exc) or entry.user_message},
    )


def create_app(provider: CompletionProvider, warm_on_startup: bool = True) -> FastAPI:
    app = FastAPI(title="Hindsight LLM", version="0.1.0")

    @app.on_event("startup")
    async def _startup_provider() -> None:
        if not warm_on_startup:
            return

        async def _warm() -> None:
            try:
                await provider.initialize()
                log_json(logger, "server.provider.ready", mode=provider.mode)
            except CompletionError as exc:
                log_json(logger, "server.provider.init_failed", level="warning", mode=provider.mode,
                         kind=type(exc).__name__, error=str(exc))
                logger.warning("LLM will auto-initialize on first call")

        app.state.warm_task = asyncio.create_task(_warm(), name="provider-warmup")

    @app.on_event("shutdown")
    async def _shutdown_provider() -> None:
        task = getattr(app.state, "warm_task", None)
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await provider.shutdown()

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "llm": {"ready": provider.is_ready(), **provider.get_info()},
        }

    @app.get("/stats")
    async def stats() -> Dict[str, Any]:
        return {"llm": provider.get_stats()}

    @app.post("/complete")
    async def complete(req: CompleteRequest) -> Dict[str, Any]:
        if not req.prompt.strip():
            raise HTTPException(status_code=400, detail="prompt is required")
        try:
            text = await provider.complete(req.prompt, req.system_prompt)
        except CompletionError as exc:
            raise _completion_http_error(exc) from exc
        return {"text": text}

    @app.post("/extract")
    async def extract(req: ExtractRequest) -> Dict[str, Any]:
        if not req.content.strip():
            raise HTTPException(status_code=400, detail="content is required")
        result = await extract_entities_and_facts(
            provider,
            req.content,
            bank_context=req.bank_context,
            action_context=req.action_context,
        )
        return {"entities": result.entities, "facts": result.facts}

    @app.post("/reflect")
    async def reflect(req: ReflectRequest) -> Dict[str, Any]:
        if not req.query.strip():
            raise HTTPException(status_code=400, detail="query is required")
        memories = [item.model_dump() for item in req.memories]
        insights: List[Dict[str, Any]] = []
        if req.generate_insights and memories:
            try:
                generated = await generate_insights(provider, req.query, memories)
            except CompletionError as exc:
                raise _completion_http_error(exc) from exc
            insights = [{"content": item.content, "confidence": item.confidence} for item in generated]
        body: Dict[str, Any] = {
            "query": req.query,
            "insights": insights,
            "memory_count": len(memories),
        }
        if req.include_memories:
            body["memories"] = memories
        return body

    return app
