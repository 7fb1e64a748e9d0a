from conveyor_api.src.routes.health import router as health_router
from conveyor_api.src.routes.pipelines import router as pipelines_router
from conveyor_api.src.routes.webhooks import router as webhooks_router

__all__ = ["health_router", "pipelines_router", "webhooks_router"]
