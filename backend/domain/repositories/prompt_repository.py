import re
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

from domain.models.prompt import CreatePromptArgs, ListPromptsArgs, Prompt, UpdatePromptArgs
from domain.services.template_engine import default_template_engine

CreateData = Union[CreatePromptArgs, Dict[str, Any]]
UpdateData = Union[UpdatePromptArgs, Dict[str, Any]]
ListData = Union[ListPromptsArgs, Dict[str, Any], None]


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "prompt"


def generate_prompt_id(name: str) -> str:
    """slug + ランダムな8桁 (同名でも別IDになる)"""
    return f"{slugify(name)}-{uuid.uuid4().hex[:8]}"


def resolve_variables(content: str, is_template: bool) -> List[str]:
    if not is_template:
        return []
    return default_template_engine.extract_variables(content)


def resolve_updated_variables(current: Prompt, changes: Dict[str, Any]) -> List[str]:
    """
    update 時の変数リスト:
    - テンプレートでなくなる / テンプレートでない → 空
    - 本文が変わった、または新たにテンプレートになった → 再抽出
    - それ以外 → 現状維持
    """
    is_template = changes.get("is_template", current.is_template)
    if not is_template:
        return []
    content = changes.get("content", current.content)
    if content != current.content or not current.is_template:
        return default_template_engine.extract_variables(content)
    return list(current.variables)


def unique_tags(tags: List[str]) -> List[str]:
    return list(dict.fromkeys(tags))


class PromptRepository(ABC):
    """
    バージョン付きプロンプトの永続化。
    DB 実装とファイル実装が同じ契約を満たす。
    """

    @abstractmethod
    def connect(self) -> None: ...

    @abstractmethod
    def disconnect(self) -> None: ...

    @abstractmethod
    def is_connected(self) -> bool: ...

    @abstractmethod
    def health_check(self) -> bool:
        """例外を投げず、失敗時は False を返す"""

    @abstractmethod
    def save(self, data: CreateData) -> Prompt: ...

    @abstractmethod
    def get_by_id(self, prompt_id: str, version: Optional[int] = None) -> Optional[Prompt]: ...

    @abstractmethod
    def list(self, filters: ListData = None) -> List[Prompt]: ...

    @abstractmethod
    def update(self, prompt_id: str, patch: UpdateData, expected_version: Optional[int] = None) -> Prompt: ...

    @abstractmethod
    def delete(self, prompt_id: str, version: Optional[int] = None) -> bool: ...

    @abstractmethod
    def list_versions(self, prompt_id: str) -> List[int]: ...
