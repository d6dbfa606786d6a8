from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from nodeflow import __version__
from nodeflow.api import routes
from nodeflow.api.routes import router
from nodeflow.config import get_settings

# Configure logging
logging.basicConfig(level=getattr(logging, get_settings().log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Close pooled outbound connections on shutdown
    await routes.http_gateway.aclose()
    await routes.ai_service.aclose()


# Create FastAPI app
app = FastAPI(
    title="nodeflow",
    description="Execution engine for visual workflow graphs of trigger, AI, action and logic nodes",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "message": "nodeflow API",
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "create_workflow": "POST /api/v1/workflows",
            "get_workflow": "GET /api/v1/workflows/{workflow_id}",
            "run_workflow": "POST /api/v1/workflows/{workflow_id}/run",
            "node_state": "GET /api/v1/workflows/{workflow_id}/state",
            "get_run": "GET /api/v1/runs/{run_id}",
            "websocket_state": "WS /api/v1/ws/workflows/{workflow_id}",
            "node_types": "GET /api/v1/node-types",
            "http_proxy": "POST /api/v1/http-proxy",
            "ai_execute": "POST /api/v1/ai/execute",
            "demo_lead_intake": "POST /api/v1/demo/lead-intake"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
