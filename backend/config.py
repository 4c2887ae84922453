import os
from pydantic_settings import BaseSettings
from pydantic import Field
import platformdirs

APP_NAME = "PromptManager"
APP_AUTHOR = "PromptManagerDev"

class Settings(BaseSettings):
    # App Info
    APP_NAME: str = APP_NAME
    APP_AUTHOR: str = APP_AUTHOR
    ENV: str = "prod"

    # Storage
    # "file" (index.json + バージョン毎のJSON) または "database" (DuckDB)
    STORAGE_BACKEND: str = "file"

    # Paths
    # デフォルトは platformdirs を使用するが、環境変数があればそれを優先する
    USER_DATA_DIR: str = Field(default_factory=lambda: platformdirs.user_data_dir(APP_NAME, APP_AUTHOR))
    DB_PATH: str | None = None
    DATABASE_URL: str | None = None
    PROMPTS_DIR: str | None = None

    # Network
    PROMPT_MANAGER_PORT: int = 8002

    # File lock (file backend)
    LOCK_RETRIES: int = 3
    LOCK_RETRY_INTERVAL: float = 0.1
    LOCK_STALE_SECONDS: float = 20.0

    # Logging
    LOG_LEVEL: str = "INFO"
    PROMPT_MANAGER_LOG_DIR: str | None = None

    class Config:
        env_file = ".env"
        extra = "ignore"

    def model_post_init(self, __context):
        # DB_PATHが未設定ならデフォルト値を設定
        if not self.DB_PATH:
            self.DB_PATH = os.path.join(self.USER_DATA_DIR, "prompts.duckdb")
        if not self.DATABASE_URL:
            self.DATABASE_URL = f"duckdb:///{self.DB_PATH}"

        # ファイルストレージのルート
        if not self.PROMPTS_DIR:
            self.PROMPTS_DIR = os.path.join(self.USER_DATA_DIR, "prompts")

        # ログディレクトリ
        if not self.PROMPT_MANAGER_LOG_DIR:
            self.PROMPT_MANAGER_LOG_DIR = os.path.join(self.USER_DATA_DIR, "logs")

    def setup_environment(self):
        """ロガーが参照する環境変数を設定する"""
        if self.PROMPT_MANAGER_LOG_DIR:
            os.environ["PROMPT_MANAGER_LOG_DIR"] = self.PROMPT_MANAGER_LOG_DIR
        os.environ["PROMPT_MANAGER_LOG_LEVEL"] = self.LOG_LEVEL

settings = Settings()
