from sqlmodel import create_engine, text
from sqlalchemy.engine import Engine
import os
import threading
from config import settings
from infra.database.schema import init_raw_db
from utils.logger import get_logger

logger = get_logger(__name__)

# DBパス設定
DB_PATH = settings.DB_PATH
DATABASE_URL = settings.DATABASE_URL

# ベースディレクトリ (alembic.ini の場所)
BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

def create_db_engine(database_url: str) -> Engine:
    # 設定を固定 (DuckDB)
    connect_args = {'config': {'worker_threads': 4, 'access_mode': 'READ_WRITE'}}
    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        connect_args=connect_args
    )

if DB_PATH and DATABASE_URL == f"duckdb:///{DB_PATH}":
    os.makedirs(os.path.dirname(DB_PATH), exist_ok=True)

# エンジン初期化
engine = create_db_engine(DATABASE_URL)

db_lock = threading.RLock()

def _alembic_config(connection):
    from alembic.config import Config

    alembic_ini_path = os.path.join(BASE_DIR, "alembic.ini")
    alembic_cfg = Config(alembic_ini_path)
    alembic_cfg.set_main_option("script_location", os.path.join(BASE_DIR, "alembic"))
    # DuckDBのロックエラーを避けるため、既存のコネクションをAlembicに渡す
    alembic_cfg.attributes["connection"] = connection
    return alembic_cfg

def init_db(target_engine: Engine | None = None):
    """
    DB初期化フロー。
    1. Raw SQL によるテーブルとシーケンスの作成
    2. Alembic: 新規DBなら stamp、既存DBなら upgrade
    """
    from alembic import command

    target_engine = target_engine or engine

    with db_lock:
        try:
            init_raw_db(target_engine)

            with target_engine.begin() as connection:
                has_version_table = connection.execute(text(
                    "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = 'alembic_version'"
                )).scalar()
                alembic_cfg = _alembic_config(connection)

                if not has_version_table:
                    logger.info("New database detected. Stamping version...")
                    command.stamp(alembic_cfg, "head")
                else:
                    logger.info("Existing database detected. Running migrations...")
                    command.upgrade(alembic_cfg, "head")
        except Exception as e:
            logger.error(f"Error during database initialization: {e}")
            raise

