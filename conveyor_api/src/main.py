from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from conveyor_api.src.config import get_settings
from conveyor_api.src.routes import health_router, pipelines_router, webhooks_router
from conveyor_api.src.services.github import PullRequestFiles
from conveyor_controller.src.controller import build_controller
from conveyor_controller.src.services.loader import load_pipelines_file

logger = logging.getLogger(__name__)

settings = get_settings()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: a bad pipeline file stops the service from starting
    definitions = load_pipelines_file(settings.pipelines_file)
    controller = build_controller(definitions)
    await controller.start(connect_k8s=settings.connect_k8s)
    app.state.controller = controller
    app.state.pull_request_files = PullRequestFiles()
    logger.info(f"Starting Conveyor API with {len(definitions)} pipelines")
    yield
    # Shutdown
    logger.info("Shutting down Conveyor API")
    await controller.stop()
    await app.state.pull_request_files.aclose()
    app.state.controller = None
    app.state.pull_request_files = None

app = FastAPI(
    title="Conveyor",
    description="Minimal CI pipeline orchestrator",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health_router)
app.include_router(pipelines_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")

@app.get("/")
async def root():
    return {
        "name": "Conveyor",
        "version": "0.1.0",
        "docs": "/docs"
    }
