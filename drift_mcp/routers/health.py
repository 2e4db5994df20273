"""Роутер для health check"""
from fastapi import APIRouter, Request

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health(request: Request):
    """Health check endpoint"""
    state = request.app.state
    context = state.service_context
    return {
        "status": "ok",
        "api_key_configured": bool(state.config.api_token),
        "sessions": len(state.handlers.session_manager),
        "services": [
            {"id": s.id, "name": s.name, "rootPath": s.root_path}
            for s in context.services
        ],
        "default_service_id": context.default_service_id,
    }
