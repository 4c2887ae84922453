from typing import Annotated, Any, Dict, List, Optional, Union
from datetime import datetime, timezone
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, StringConstraints, model_validator
from pydantic import ValidationError as PydanticValidationError

from domain.errors import ValidationError

TagName = Annotated[str, Field(min_length=1)]
# trim は name / content / description のみ (tags, category, metadata はそのまま保持)
PromptName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
PromptContent = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
PromptDescription = Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)]

# update で null を受け付けないフィールド
NON_NULLABLE_UPDATE_FIELDS = ("name", "content", "is_template", "tags")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Prompt(BaseModel):
    """最新状態 (または特定バージョン) のプロンプト"""
    id: str
    name: str
    content: str
    description: Optional[str] = None
    is_template: bool = False
    variables: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    version: int = 1


class CreatePromptArgs(BaseModel):
    name: PromptName
    content: PromptContent
    description: Optional[PromptDescription] = None
    is_template: bool = False
    tags: List[TagName] = Field(default_factory=list)
    # テンプレートの場合は content からの抽出結果で常に上書きされる
    variables: Optional[List[str]] = None
    category: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class UpdatePromptArgs(BaseModel):
    """
    部分更新。値が「指定されたかどうか」は model_fields_set で判定する。
    description / category / metadata は None を指定するとクリアされる。
    """
    name: Optional[PromptName] = None
    content: Optional[PromptContent] = None
    description: Optional[PromptDescription] = None
    is_template: Optional[bool] = None
    tags: Optional[List[TagName]] = None
    variables: Optional[List[str]] = None
    category: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def reject_null_required_fields(self):
        for key in NON_NULLABLE_UPDATE_FIELDS:
            if key in self.model_fields_set and getattr(self, key) is None:
                raise ValueError(f"{key} cannot be null")
        return self

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ListPromptsArgs(BaseModel):
    category: Optional[str] = None
    is_template: Optional[bool] = None
    tags: Optional[List[str]] = None
    limit: int = Field(default=50, gt=0)
    offset: int = Field(default=0, ge=0)


class PromptStats(BaseModel):
    total: int = 0
    templates: int = 0
    regular: int = 0
    categories: Dict[str, int] = Field(default_factory=dict)
    tags: Dict[str, int] = Field(default_factory=dict)


@dataclass
class ValidationResult:
    """検証結果 (例外を投げずに ok / errors を返す)"""
    ok: bool
    value: Optional[BaseModel] = None
    errors: List[str] = field(default_factory=list)


def _format_errors(exc: PydanticValidationError) -> List[str]:
    errors = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()))
        message = err.get("msg", "invalid value")
        errors.append(f"{location}: {message}" if location else message)
    return errors


def validate_args(model: type, data: Union[BaseModel, Dict[str, Any], None]) -> ValidationResult:
    if isinstance(data, model):
        # 既に検証済みのインスタンスでも strip 等を再適用する
        data = data.model_dump(exclude_unset=True)
    try:
        value = model.model_validate(data or {})
    except PydanticValidationError as e:
        return ValidationResult(ok=False, errors=_format_errors(e))
    return ValidationResult(ok=True, value=value)


def parse_args(model: type, data: Union[BaseModel, Dict[str, Any], None]):
    result = validate_args(model, data)
    if not result.ok:
        raise ValidationError(result.errors)
    return result.value
