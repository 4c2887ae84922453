import os
import pytest
import sys
import tempfile
from typing import Generator

# 1. パス解決: backendディレクトリをsys.pathに追加
CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
BACKEND_DIR = os.path.dirname(CURRENT_DIR)
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

# 2. 設定・ロガーがユーザーディレクトリを汚さないよう、インポート前に環境変数を差し替える
TEST_DATA_DIR = tempfile.mkdtemp(prefix="prompt_manager_test_")
os.environ["USER_DATA_DIR"] = TEST_DATA_DIR
os.environ["PROMPT_MANAGER_LOG_DIR"] = os.path.join(TEST_DATA_DIR, "logs")
os.environ["STORAGE_BACKEND"] = "file"

from infra.database.connection import create_db_engine
from infra.repositories.prompt_repository import DatabasePromptRepository
from infra.repositories.file_prompt_repository import FilePromptRepository
from app.services.prompt_app_service import PromptAppService

@pytest.fixture(name="db_repository")
def db_repository_fixture(tmp_path) -> Generator[DatabasePromptRepository, None, None]:
    """
    テストごとに完全に独立したDB環境（物理ファイル）を構築する。
    connect() で Raw SQL のスキーマ作成と Alembic stamp が走る。
    """
    test_db_path = tmp_path / "prompts_test.duckdb"
    engine = create_db_engine(f"duckdb:///{test_db_path}")
    repository = DatabasePromptRepository(engine)
    repository.connect()
    yield repository
    repository.disconnect()

@pytest.fixture(name="file_repository")
def file_repository_fixture(tmp_path) -> Generator[FilePromptRepository, None, None]:
    repository = FilePromptRepository(str(tmp_path / "prompts"), lock_retry_interval=0.01)
    repository.connect()
    yield repository
    repository.disconnect()

@pytest.fixture(name="repository", params=["file", "database"])
def repository_fixture(request):
    """両方のバックエンドで同じ契約をテストする"""
    if request.param == "file":
        return request.getfixturevalue("file_repository")
    return request.getfixturevalue("db_repository")

@pytest.fixture(name="service")
def service_fixture(repository) -> PromptAppService:
    return PromptAppService(repository)

@pytest.fixture(name="client")
def client_fixture(file_repository) -> Generator:
    """FastAPIのTestClientを提供し、サービスをDIで差し替える"""
    from fastapi.testclient import TestClient
    from main import app
    from api.routers.prompts import get_prompt_service

    def get_prompt_service_override():
        return PromptAppService(file_repository)

    app.dependency_overrides[get_prompt_service] = get_prompt_service_override
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
