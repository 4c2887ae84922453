from config import Settings, settings as default_settings
from domain.repositories.prompt_repository import PromptRepository

STORAGE_FILE = "file"
STORAGE_DATABASE = "database"

def create_prompt_repository(settings: Settings | None = None) -> PromptRepository:
    """設定 (STORAGE_BACKEND) に応じてリポジトリ実装を選択する"""
    settings = settings or default_settings
    backend = settings.STORAGE_BACKEND.lower()

    if backend == STORAGE_FILE:
        from infra.repositories.file_prompt_repository import FilePromptRepository
        return FilePromptRepository(
            settings.PROMPTS_DIR,
            lock_retries=settings.LOCK_RETRIES,
            lock_retry_interval=settings.LOCK_RETRY_INTERVAL,
            lock_stale_seconds=settings.LOCK_STALE_SECONDS,
        )

    if backend == STORAGE_DATABASE:
        from infra.database.connection import create_db_engine, DATABASE_URL, engine
        from infra.repositories.prompt_repository import DatabasePromptRepository
        if settings.DATABASE_URL == DATABASE_URL:
            return DatabasePromptRepository(engine)
        return DatabasePromptRepository(create_db_engine(settings.DATABASE_URL))

    raise ValueError(f"Unknown storage backend: {settings.STORAGE_BACKEND}")
