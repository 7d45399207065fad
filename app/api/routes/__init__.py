"""API routes."""

from fastapi import APIRouter

from app.api.routes import dashboard_ws, handoffs, human_agents, webhooks

api_router = APIRouter()

# Dashboard push (token passed as query parameter)
api_router.include_router(dashboard_ws.router, prefix="/ws", tags=["dashboard"])

# Protected routes (auth required)
api_router.include_router(handoffs.router, prefix="/handoffs", tags=["handoffs"])
api_router.include_router(human_agents.router, prefix="/human-agents", tags=["human-agents"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
