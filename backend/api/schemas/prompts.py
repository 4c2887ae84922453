from pydantic import BaseModel
from typing import List, Optional, Any, Dict

# 制約チェック (長さ・trim) はリポジトリ側で行い、違反は 400 として返す

class PromptCreate(BaseModel):
    name: str
    content: str
    description: Optional[str] = None
    is_template: bool = False
    tags: List[str] = []
    category: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

class PromptUpdate(BaseModel):
    name: Optional[str] = None
    content: Optional[str] = None
    description: Optional[str] = None
    is_template: Optional[bool] = None
    tags: Optional[List[str]] = None
    category: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    expected_version: Optional[int] = None

class ApplyTemplateRequest(BaseModel):
    variables: Dict[str, str] = {}

class ApplyTemplateResponse(BaseModel):
    id: str
    content: str

class DeleteResponse(BaseModel):
    ok: bool
    id: str
    version: Optional[int] = None

class VersionsResponse(BaseModel):
    id: str
    versions: List[int]
