from typing import Dict, List, Optional

from domain.errors import NotATemplateError, NotFoundError
from domain.models.prompt import Prompt, PromptStats
from domain.repositories.prompt_repository import CreateData, ListData, PromptRepository, UpdateData
from domain.services.template_engine import TemplateEngine, default_template_engine
from utils.logger import get_logger

logger = get_logger(__name__)

# 統計・検索時の全件走査で 1 回に読むページサイズ
SCAN_PAGE_SIZE = 200

class PromptAppService:
    def __init__(self, repository: PromptRepository, template_engine: TemplateEngine = default_template_engine):
        self.repository = repository
        self.template_engine = template_engine

    def create_prompt(self, data: CreateData) -> Prompt:
        prompt = self.repository.save(data)
        logger.info(f"Created prompt {prompt.id} ({prompt.name})")
        return prompt

    def get_prompt(self, prompt_id: str, version: Optional[int] = None) -> Prompt:
        prompt = self.repository.get_by_id(prompt_id, version)
        if not prompt:
            raise NotFoundError("Prompt", prompt_id, version)
        return prompt

    def list_prompts(self, filters: ListData = None) -> List[Prompt]:
        return self.repository.list(filters)

    def update_prompt(self, prompt_id: str, patch: UpdateData, expected_version: Optional[int] = None) -> Prompt:
        return self.repository.update(prompt_id, patch, expected_version=expected_version)

    def delete_prompt(self, prompt_id: str, version: Optional[int] = None) -> bool:
        return self.repository.delete(prompt_id, version)

    def list_prompt_versions(self, prompt_id: str) -> List[int]:
        return self.repository.list_versions(prompt_id)

    def apply_template(self, prompt_id: str, variables: Dict[str, str]) -> str:
        prompt = self.get_prompt(prompt_id)
        if not prompt.is_template:
            raise NotATemplateError(prompt.name)
        return self.template_engine.apply_template_with_validation(prompt.content, variables)

    def get_stats(self) -> PromptStats:
        """
        全件走査による集計。
        tags はプロンプト毎の重複排除をせず出現回数を数える。
        """
        stats = PromptStats()
        for prompt in self._scan_all():
            stats.total += 1
            if prompt.is_template:
                stats.templates += 1
            else:
                stats.regular += 1
            if prompt.category:
                stats.categories[prompt.category] = stats.categories.get(prompt.category, 0) + 1
            for tag in prompt.tags:
                stats.tags[tag] = stats.tags.get(tag, 0) + 1
        return stats

    def search_prompts(self, query: str) -> List[Prompt]:
        """name / content / description / tags の大文字小文字を無視した部分一致"""
        term = query.lower()
        results = []
        for prompt in self._scan_all():
            if (
                term in prompt.name.lower()
                or term in prompt.content.lower()
                or (prompt.description and term in prompt.description.lower())
                or any(term in tag.lower() for tag in prompt.tags)
            ):
                results.append(prompt)
        return results

    def health_check(self) -> bool:
        return self.repository.health_check()

    def _scan_all(self) -> List[Prompt]:
        prompts: List[Prompt] = []
        offset = 0
        while True:
            page = self.repository.list({"limit": SCAN_PAGE_SIZE, "offset": offset})
            prompts.extend(page)
            if len(page) < SCAN_PAGE_SIZE:
                return prompts
            offset += SCAN_PAGE_SIZE
