from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.schemas.prompts import (
    ApplyTemplateRequest,
    ApplyTemplateResponse,
    DeleteResponse,
    PromptCreate,
    PromptUpdate,
    VersionsResponse,
)
from app.services.prompt_app_service import PromptAppService
from domain.errors import (
    ConflictError,
    NotATemplateError,
    NotFoundError,
    PromptManagerError,
    StorageError,
    TemplateError,
    ValidationError,
)
from domain.models.prompt import Prompt, PromptStats
from utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()

def get_prompt_service(request: Request) -> PromptAppService:
    return PromptAppService(request.app.state.repository)

def to_http_error(e: PromptManagerError) -> HTTPException:
    """ドメイン例外をHTTPレスポンスへ変換する"""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=e.errors)
    if isinstance(e, (TemplateError, NotATemplateError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, StorageError):
        logger.error(f"Storage error: {e}")
        return HTTPException(status_code=503, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))

@router.get("/api/prompts", response_model=List[Prompt])
def list_prompts(
    category: Optional[str] = None,
    is_template: Optional[bool] = None,
    tags: Optional[List[str]] = Query(None),
    limit: int = 50,
    offset: int = 0,
    service: PromptAppService = Depends(get_prompt_service),
):
    filters = {"category": category, "is_template": is_template, "tags": tags, "limit": limit, "offset": offset}
    try:
        return service.list_prompts(filters)
    except PromptManagerError as e:
        raise to_http_error(e)

@router.post("/api/prompts", response_model=Prompt)
def create_prompt(prompt: PromptCreate, service: PromptAppService = Depends(get_prompt_service)):
    try:
        return service.create_prompt(prompt.model_dump())
    except PromptManagerError as e:
        raise to_http_error(e)

# /{prompt_id} より先に定義する
@router.get("/api/prompts/search", response_model=List[Prompt])
def search_prompts(q: str, service: PromptAppService = Depends(get_prompt_service)):
    try:
        return service.search_prompts(q)
    except PromptManagerError as e:
        raise to_http_error(e)

@router.get("/api/prompts/stats", response_model=PromptStats)
def get_stats(service: PromptAppService = Depends(get_prompt_service)):
    try:
        return service.get_stats()
    except PromptManagerError as e:
        raise to_http_error(e)

@router.get("/api/prompts/{prompt_id}", response_model=Prompt)
def get_prompt(prompt_id: str, version: Optional[int] = None, service: PromptAppService = Depends(get_prompt_service)):
    try:
        return service.get_prompt(prompt_id, version)
    except PromptManagerError as e:
        raise to_http_error(e)

@router.put("/api/prompts/{prompt_id}", response_model=Prompt)
def update_prompt(prompt_id: str, prompt: PromptUpdate, service: PromptAppService = Depends(get_prompt_service)):
    patch = prompt.model_dump(exclude_unset=True, exclude={"expected_version"})
    try:
        return service.update_prompt(prompt_id, patch, expected_version=prompt.expected_version)
    except PromptManagerError as e:
        raise to_http_error(e)

@router.delete("/api/prompts/{prompt_id}", response_model=DeleteResponse)
def delete_prompt(prompt_id: str, version: Optional[int] = None, service: PromptAppService = Depends(get_prompt_service)):
    try:
        success = service.delete_prompt(prompt_id, version)
    except PromptManagerError as e:
        raise to_http_error(e)
    if not success:
        raise HTTPException(status_code=404, detail="Prompt not found")
    return DeleteResponse(ok=True, id=prompt_id, version=version)

@router.get("/api/prompts/{prompt_id}/versions", response_model=VersionsResponse)
def list_versions(prompt_id: str, service: PromptAppService = Depends(get_prompt_service)):
    try:
        return VersionsResponse(id=prompt_id, versions=service.list_prompt_versions(prompt_id))
    except PromptManagerError as e:
        raise to_http_error(e)

@router.post("/api/prompts/{prompt_id}/apply", response_model=ApplyTemplateResponse)
def apply_template(prompt_id: str, body: ApplyTemplateRequest, service: PromptAppService = Depends(get_prompt_service)):
    try:
        return ApplyTemplateResponse(id=prompt_id, content=service.apply_template(prompt_id, body.variables))
    except PromptManagerError as e:
        raise to_http_error(e)
