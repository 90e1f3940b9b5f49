"""
Scheduler HTTP Server

使用 FastAPI 提供 HTTP 接口，支持：
- /health - 健康检查
- /api/v1/runs - 运行一次调度，返回最终回答与全部事件
- /api/v1/runs/stream - 以 Server-Sent Events 推送事件
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Literal

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from langchain_core.messages import convert_to_messages
from pydantic import BaseModel, ConfigDict, Field

from .config import get_settings
from .errors import PreconditionError, RunDeadlineExceeded
from .events import ListEventSink, QueueEventSink, SkillEvent
from .log_config import configure_logging
from .models import Canvas, CanvasEditConfig, CapabilityMeta, ContentItem, Project, Resource, RunConfig
from .orchestrator import SchedulerRunner, create_services

logger = structlog.get_logger()

VERSION = "0.1.0"


# ========================================
# 请求/响应模型
# ========================================

class ChatTurn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class RunRequest(BaseModel):
    """调度请求"""
    query: str = Field(..., min_length=1, max_length=20000, description="用户问题")
    images: list[str] = Field(default_factory=list, description="图片 URL 或 data URL")
    locale: str = "en"
    model_name: str | None = None
    model_context_limit: int | None = Field(default=None, gt=0)
    chat_history: list[ChatTurn] = Field(default_factory=list)

    resources: list[Resource] = Field(default_factory=list)
    canvases: list[Canvas] = Field(default_factory=list)
    projects: list[Project] = Field(default_factory=list)
    content_list: list[ContentItem] = Field(default_factory=list)
    canvas_edit_config: CanvasEditConfig | None = None

    enable_web_search: bool = False
    enable_knowledge_base_search: bool = False
    enable_canvas_intents: bool = True

    selected_skill: CapabilityMeta | None = None
    installed_skills: list[CapabilityMeta] = Field(default_factory=list)
    project_id: str | None = None
    conv_id: str | None = None
    deadline_seconds: float | None = Field(default=None, gt=0)

    model_config = ConfigDict(protected_namespaces=())

    def to_run_config(self) -> RunConfig:
        history = convert_to_messages([(turn.role, turn.content) for turn in self.chat_history])
        return RunConfig(
            chat_history=history,
            **self.model_dump(exclude={"query", "images", "chat_history"}),
        )


class RunResponse(BaseModel):
    """调度结果"""
    run_id: str
    answer: str
    operation_type: str | None = None
    contextual_user_query: str = ""
    related_questions: list[str] = Field(default_factory=list)
    events: list[SkillEvent] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """健康检查响应"""
    status: str
    timestamp: str
    version: str
    uptime_seconds: float
    capabilities: list[str] = Field(default_factory=list)


_start_time = datetime.now(UTC)


def _get_runner(request: Request) -> SchedulerRunner:
    runner = getattr(request.app.state, "runner", None)
    if runner is None:
        raise HTTPException(status_code=503, detail="Server not ready")
    return runner


def _related_questions(sink: ListEventSink) -> list[str]:
    events = sink.by_key("relatedQuestions")
    return list(events[-1].json_content() or []) if events else []


def create_app(runner: SchedulerRunner | None = None) -> FastAPI:
    """
    构建 FastAPI 应用

    未传入 runner 时在 lifespan 中根据配置创建（编译后的图只构建一次）。
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = get_settings()
        logger.info("server.starting", port=settings.server_port)
        if getattr(app.state, "runner", None) is None:
            app.state.runner = SchedulerRunner(create_services(settings))
        logger.info("server.started", capabilities=app.state.runner.services.registry.names())
        yield
        logger.info("server.stopping")

    app = FastAPI(
        title="Skill Scheduler",
        description="Orchestrates intent matching, context preparation and capability calls",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.runner = runner

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """健康检查端点"""
        runner = getattr(request.app.state, "runner", None)
        return HealthResponse(
            status="ok" if runner is not None else "starting",
            timestamp=datetime.now(UTC).isoformat(),
            version=VERSION,
            uptime_seconds=(datetime.now(UTC) - _start_time).total_seconds(),
            capabilities=runner.services.registry.names() if runner is not None else [],
        )

    @app.get("/")
    async def root():
        return {
            "name": "Skill Scheduler",
            "version": VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    @app.post("/api/v1/runs", response_model=RunResponse)
    async def create_run(body: RunRequest, request: Request):
        """
        运行一次调度

        前置条件失败返回 422，超时返回 504。
        """
        runner = _get_runner(request)
        sink = ListEventSink()
        logger.info("run.request", query=body.query[:50], conv_id=body.conv_id)

        try:
            result = await runner.run(body.query, body.to_run_config(), sink, images=body.images)
        except PreconditionError as e:
            raise HTTPException(status_code=422, detail={"error_code": e.error_code, "message": str(e)})
        except RunDeadlineExceeded as e:
            raise HTTPException(status_code=504, detail={"error_code": e.error_code, "message": str(e)})
        except Exception as e:
            logger.error("run.error", error=str(e))
            raise HTTPException(status_code=500, detail=str(e))

        return RunResponse(
            run_id=result.run_id,
            answer=result.answer,
            operation_type=result.operation_type.value if result.operation_type else None,
            contextual_user_query=result.contextual_user_query,
            related_questions=_related_questions(sink),
            events=sink.events,
        )

    @app.post("/api/v1/runs/stream")
    async def stream_run(body: RunRequest, request: Request):
        """
        Streaming run endpoint

        Returns Server-Sent Events (SSE), one per scheduler event.
        """
        runner = _get_runner(request)
        run_config = body.to_run_config()

        async def event_generator():
            sink = QueueEventSink()

            async def _run():
                try:
                    return await runner.run(body.query, run_config, sink, images=body.images)
                finally:
                    sink.close()

            task = asyncio.create_task(_run())
            try:
                async for event in sink.stream():
                    yield f"data: {event.model_dump_json()}\n\n"
                try:
                    await task
                except Exception as e:
                    # error/end 事件已经推送给客户端
                    logger.error("run_stream.error", error=str(e))
            finally:
                if not task.done():
                    task.cancel()

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    return app


app = create_app()


def main():
    """启动服务器"""
    configure_logging()
    settings = get_settings()
    logger.info("server.main", host="0.0.0.0", port=settings.server_port)

    uvicorn.run(
        "skill_scheduler.server:app",
        host="0.0.0.0",
        port=settings.server_port,
        reload=settings.debug,
        log_level="info",
    )


if __name__ == "__main__":
    main()
