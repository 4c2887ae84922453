from sqlalchemy import text
from sqlalchemy.engine import Engine
from utils.logger import get_logger

logger = get_logger(__name__)

# 現在のスキーマバージョン
CURRENT_SCHEMA_VERSION = 1

def get_db_schema_sql() -> str:
    """
    DuckDBの制約回避：
    外部キー(FK)は作成しない。また、同一トランザクション内で DELETE → INSERT を行う
    関連テーブル (prompt_tags / prompt_variables) には主キー・ユニーク制約を付けず、
    重複排除はリポジトリ側で行う。
    """
    return """
    CREATE SEQUENCE IF NOT EXISTS seq_tags_id START 1;

    CREATE TABLE IF NOT EXISTS prompts (
        id VARCHAR PRIMARY KEY,
        name VARCHAR NOT NULL,
        content VARCHAR NOT NULL,
        description VARCHAR,
        is_template BOOLEAN NOT NULL DEFAULT FALSE,
        category VARCHAR,
        metadata_json VARCHAR,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        version INTEGER NOT NULL DEFAULT 1
    );

    CREATE TABLE IF NOT EXISTS prompt_versions (
        prompt_id VARCHAR NOT NULL,
        version INTEGER NOT NULL,
        name VARCHAR NOT NULL,
        content VARCHAR NOT NULL,
        description VARCHAR,
        is_template BOOLEAN NOT NULL DEFAULT FALSE,
        category VARCHAR,
        metadata_json VARCHAR,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        PRIMARY KEY (prompt_id, version)
    );

    CREATE TABLE IF NOT EXISTS tags (
        id INTEGER PRIMARY KEY DEFAULT nextval('seq_tags_id'),
        name VARCHAR NOT NULL UNIQUE
    );

    CREATE TABLE IF NOT EXISTS prompt_tags (
        prompt_id VARCHAR NOT NULL,
        tag_id INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS prompt_variables (
        prompt_id VARCHAR NOT NULL,
        variable_name VARCHAR NOT NULL,
        variable_order INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS schema_info (
        key VARCHAR PRIMARY KEY,
        value VARCHAR NOT NULL
    );
    """

def get_current_schema_version(conn) -> int:
    result = conn.execute(text("SELECT value FROM schema_info WHERE key = 'version'"))
    row = result.fetchone()
    return int(row[0]) if row else 0

def set_schema_version(conn, version: int):
    conn.execute(text("""
        INSERT INTO schema_info (key, value) VALUES ('version', :version)
        ON CONFLICT (key) DO UPDATE SET value = :version
    """), {"version": str(version)})

def init_raw_db(conn_engine: Engine):
    logger.info("Initializing prompt store schema...")
    try:
        with conn_engine.begin() as conn:
            statements = [s.strip() for s in get_db_schema_sql().split(';') if s.strip()]
            for stmt in statements:
                conn.execute(text(stmt))

            current_version = get_current_schema_version(conn)
            if current_version < CURRENT_SCHEMA_VERSION:
                set_schema_version(conn, CURRENT_SCHEMA_VERSION)
    except Exception as e:
        logger.error(f"Failed to initialize database schema: {e}")
        raise
