from __future__ import annotations

import asyncio
import logging

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from flowtext_mcp.backends.factory import build_backends
from flowtext_mcp.config import Settings, load_settings
from flowtext_mcp.mcp_tools import ToolRegistry
from flowtext_mcp.orchestrator import RecognitionOrchestrator
from flowtext_mcp.registry import TaskRegistry
from flowtext_mcp.services.media import MediaToolkit
from flowtext_mcp.services.storage import SubtitleStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


class AppRuntime:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.registry = TaskRegistry()
        self.orchestrator = RecognitionOrchestrator(
            registry=self.registry,
            backends=build_backends(settings),
            settings=settings,
        )
        self.media = MediaToolkit(
            settings.data_dir / "audio",
            ffprobe_binary=settings.ffprobe_binary,
            ffmpeg_binary=settings.ffmpeg_binary,
        )
        self.store = SubtitleStore(settings.data_dir / "exports")

    async def close(self) -> None:
        live = self.registry.active_task_ids()
        if live:
            logger.info("Shutting down with %s task(s) still running", len(live))
        await self.orchestrator.shutdown()


def create_app(runtime: AppRuntime) -> FastMCP:
    mcp = FastMCP(name="flowtext-mcp")

    tools = ToolRegistry(runtime.orchestrator, runtime.media, runtime.store)
    tools.register(mcp)

    @mcp.custom_route(runtime.settings.health_path, methods=["GET"])
    async def health(_: Request) -> JSONResponse:
        return JSONResponse(
            {
                "ok": True,
                "tasks": runtime.registry.count_by_status(),
                "data_dir": str(runtime.settings.data_dir),
                "mcp_path": runtime.settings.mcp_path,
            }
        )

    return mcp


async def _serve(runtime: AppRuntime) -> None:
    settings = runtime.settings
    app = create_app(runtime)
    logger.info("Starting MCP server on %s:%s%s", settings.host, settings.port, settings.mcp_path)
    try:
        await app.run_async(
            transport="http",
            host=settings.host,
            port=settings.port,
            path=settings.mcp_path,
        )
    finally:
        await runtime.close()


def cli() -> None:
    settings = load_settings()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    asyncio.run(_serve(AppRuntime(settings)))


if __name__ == "__main__":
    cli()
