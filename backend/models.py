# Alembic / テストから参照するテーブル定義の集約
from domain.models.prompt_record import (
    PromptRecord,
    PromptVersionRecord,
    Tag,
    PromptTag,
    PromptVariable,
)
from domain.models.prompt import Prompt, CreatePromptArgs, UpdatePromptArgs, ListPromptsArgs
