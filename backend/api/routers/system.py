from fastapi import APIRouter, Depends
from app.services.prompt_app_service import PromptAppService
from api.routers.prompts import get_prompt_service
from config import settings

router = APIRouter()

@router.get("/api/health")
def health_check(service: PromptAppService = Depends(get_prompt_service)):
    """ストレージへの疎通確認 (失敗しても例外にはしない)"""
    healthy = service.health_check()
    return {
        "status": "ok" if healthy else "error",
        "storage_backend": settings.STORAGE_BACKEND,
        "healthy": healthy,
    }
