"""
Streameme Backend - FastAPI server
Main entry point for the video analysis upload service

FastAPI is the web framework (defines routes, endpoints, middleware)
Uvicorn is the ASGI server (runs the FastAPI application)
"""

import argparse
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.shared.config.settings import Settings
from src.shared.inference.invoker import InferenceInvoker
from src.shared.inference.port import AnalysisEngine, BoundedEngine
from src.shared.inference.script_engine import InferenceScriptEngine, engine_available
from src.shared.upload_video.multipart import MultipartDecoder
from src.shared.upload_video.routes import UploadHandler, router as upload_router

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s %(levelname)s %(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


def create_app(settings: Optional[Settings] = None, engine: Optional[AnalysisEngine] = None) -> FastAPI:
    """
    Builds the application.

    Args:
        settings: Service configuration (read from the environment if omitted)
        engine: Analysis engine to use; defaults to the inference script
            described by ``settings``

    Returns:
        Configured FastAPI app
    """
    settings = settings or Settings.from_env()
    script_engine = None
    if engine is None:
        script_engine = InferenceScriptEngine.from_settings(settings)
        engine = script_engine

    app = FastAPI(
        title="Streameme Backend",
        description="Video upload service returning time-windowed content suggestions",
        version="0.1.0"
    )

    # Configure CORS to allow frontend connections
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["POST"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.upload_handler = UploadHandler(
        decoder=MultipartDecoder(max_body_size=settings.max_upload_bytes),
        invoker=InferenceInvoker(
            BoundedEngine(engine, settings.max_concurrent_analyses, timeout=settings.engine_timeout)
        )
    )
    app.include_router(upload_router)

    @app.get("/")
    async def root():
        """Health check endpoint"""
        return {"message": "Streameme Backend is running", "status": "ok"}

    @app.get("/health")
    async def health():
        """Health check endpoint, including whether the inference script is present"""
        if script_engine is None:
            return {"status": "healthy", "engine": "custom"}
        available = engine_available(script_engine)
        return {
            "status": "healthy" if available else "degraded",
            "engine": "available" if available else "missing"
        }

    return app


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="streameme-backend", description="Run the Streameme upload service")
    parser.add_argument("-p", "--port", type=int, default=None, help="The port to listen on (default 9090)")
    parser.add_argument("--host", default=None, help="The address to bind to (default 0.0.0.0)")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    import uvicorn

    args = parse_args(argv)
    settings = Settings.from_env().with_overrides(port=args.port, host=args.host)
    configure_logging(settings.log_level)
    logger.info(f"Engine directory: {settings.engine_dir}, upload limit: {settings.max_upload_bytes} bytes")

    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
