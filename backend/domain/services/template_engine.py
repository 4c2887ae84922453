import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping

from domain.errors import MissingVariableError, MissingVariablesError

# {{ と次の }} の間を変数名とする (ネスト非対応)
PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]*)\}\}")


@dataclass
class VariableValidation:
    valid: bool
    missing: List[str] = field(default_factory=list)
    extra: List[str] = field(default_factory=list)


class TemplateEngine:
    """
    {{variable}} 形式のプレースホルダを扱うテンプレートエンジン。
    置換は一回のみで、置換後の値は再スキャンしない (値に含まれる {{...}} はそのまま残る)。
    """

    def extract_variables(self, content: str) -> List[str]:
        """出現順に重複なしで変数名を返す"""
        seen = set()
        names: List[str] = []
        for match in PLACEHOLDER_PATTERN.finditer(content):
            name = match.group(1).strip()
            if not name or name in seen:
                continue
            seen.add(name)
            names.append(name)
        return names

    def apply_template(self, content: str, variables: Mapping[str, str]) -> str:
        def replace(match: re.Match) -> str:
            name = match.group(1).strip()
            if not name:
                return match.group(0)
            if name not in variables:
                raise MissingVariableError(name)
            return variables[name]

        return PLACEHOLDER_PATTERN.sub(replace, content)

    def validate_variables(self, content: str, provided: Mapping[str, str]) -> VariableValidation:
        required = self.extract_variables(content)
        missing = [name for name in required if name not in provided]
        extra = [name for name in provided if name not in required]
        return VariableValidation(valid=not missing, missing=missing, extra=extra)

    def apply_template_with_validation(self, content: str, variables: Dict[str, str]) -> str:
        validation = self.validate_variables(content, variables)
        if not validation.valid:
            raise MissingVariablesError(validation.missing)
        return self.apply_template(content, variables)


default_template_engine = TemplateEngine()
