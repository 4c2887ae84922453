import json
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, desc, func, insert, text
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from domain.errors import ConflictError, NotFoundError, PromptManagerError, StorageError
from domain.models.prompt import CreatePromptArgs, ListPromptsArgs, Prompt, UpdatePromptArgs, parse_args, utc_now
from domain.models.prompt_record import PromptRecord, PromptTag, PromptVariable, PromptVersionRecord, Tag
from domain.repositories.prompt_repository import (
    CreateData,
    ListData,
    PromptRepository,
    UpdateData,
    generate_prompt_id,
    resolve_updated_variables,
    resolve_variables,
    unique_tags,
)
from utils.logger import get_logger

logger = get_logger(__name__)

# update で PromptRecord にそのまま反映するフィールド
SCALAR_FIELDS = ("name", "content", "description", "is_template", "category")


def _dump_metadata(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    if metadata is None:
        return None
    return json.dumps(metadata, ensure_ascii=False)


def _load_metadata(metadata_json: Optional[str]) -> Optional[Dict[str, Any]]:
    if not metadata_json:
        return None
    return json.loads(metadata_json)


class DatabasePromptRepository(PromptRepository):
    """
    DuckDB (SQLModel) によるリポジトリ。
    prompts: 最新版 / prompt_versions: 履歴 / tags + prompt_tags / prompt_variables。
    更新系は 1 セッション = 1 トランザクションで行い、失敗時はロールバックする。
    """

    def __init__(self, engine: Optional[Engine] = None, initialize_schema: bool = True):
        if engine is None:
            from infra.database.connection import engine as default_engine
            engine = default_engine
        self.engine = engine
        self.initialize_schema = initialize_schema
        self._connected = False

    # --- lifecycle ---

    def connect(self) -> None:
        try:
            if self.initialize_schema:
                from infra.database.connection import init_db
                init_db(self.engine)
            with Session(self.engine) as session:
                session.connection().execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            raise StorageError("Failed to connect to database", e) from e
        self._connected = True
        logger.info("Connected to database storage")

    def disconnect(self) -> None:
        self._connected = False
        self.engine.dispose()

    def is_connected(self) -> bool:
        return self._connected

    def health_check(self) -> bool:
        if not self._connected:
            return False
        try:
            with Session(self.engine) as session:
                session.connection().execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    # --- operations ---

    def save(self, data: CreateData) -> Prompt:
        self._ensure_connected()
        args: CreatePromptArgs = parse_args(CreatePromptArgs, data)

        prompt_id = generate_prompt_id(args.name)
        now = utc_now()
        variables = resolve_variables(args.content, args.is_template)

        with Session(self.engine) as session:
            try:
                record = PromptRecord(
                    id=prompt_id,
                    name=args.name,
                    content=args.content,
                    description=args.description,
                    is_template=args.is_template,
                    category=args.category,
                    metadata_json=_dump_metadata(args.metadata),
                    created_at=now,
                    updated_at=now,
                    version=1,
                )
                session.add(record)
                session.add(self._snapshot(record))
                session.flush()

                self._replace_tags(session, prompt_id, unique_tags(args.tags))
                self._replace_variables(session, prompt_id, variables)
                session.commit()
                logger.info(f"Saved prompt {prompt_id} (version 1)")
                return self._load(session, prompt_id)
            except Exception as e:
                session.rollback()
                logger.error(f"Failed to save prompt {prompt_id}: {e}")
                raise StorageError(f"Failed to save prompt {prompt_id}", e) from e

    def get_by_id(self, prompt_id: str, version: Optional[int] = None) -> Optional[Prompt]:
        self._ensure_connected()
        try:
            with Session(self.engine) as session:
                return self._load(session, prompt_id, version)
        except Exception as e:
            logger.error(f"Failed to read prompt {prompt_id}: {e}")
            raise StorageError(f"Failed to read prompt {prompt_id}", e) from e

    def list(self, filters: ListData = None) -> List[Prompt]:
        self._ensure_connected()
        args: ListPromptsArgs = parse_args(ListPromptsArgs, filters)

        query = select(PromptRecord)
        if args.category:
            query = query.where(PromptRecord.category == args.category)
        if args.is_template is not None:
            query = query.where(PromptRecord.is_template == args.is_template)
        if args.tags:
            wanted = unique_tags(args.tags)
            # 指定タグを「すべて」持つプロンプトのみ
            tagged = (
                select(PromptTag.prompt_id)
                .join(Tag, Tag.id == PromptTag.tag_id)
                .where(Tag.name.in_(wanted))
                .group_by(PromptTag.prompt_id)
                .having(func.count(func.distinct(Tag.name)) == len(wanted))
            )
            query = query.where(PromptRecord.id.in_(tagged))

        query = (
            query.order_by(desc(PromptRecord.updated_at), PromptRecord.id)
            .offset(args.offset)
            .limit(args.limit)
        )

        try:
            with Session(self.engine) as session:
                records = session.exec(query).all()
                return [self._to_prompt(session, record) for record in records]
        except Exception as e:
            logger.error(f"Failed to list prompts: {e}")
            raise StorageError("Failed to list prompts", e) from e

    def update(self, prompt_id: str, patch: UpdateData, expected_version: Optional[int] = None) -> Prompt:
        self._ensure_connected()
        changes = parse_args(UpdatePromptArgs, patch).changes()

        with Session(self.engine) as session:
            try:
                current = self._load(session, prompt_id)
                if current is None:
                    raise NotFoundError("Prompt", prompt_id)
                if expected_version is not None and expected_version != current.version:
                    raise ConflictError(prompt_id, expected_version, current.version)

                record = session.get(PromptRecord, prompt_id)
                for key in SCALAR_FIELDS:
                    if key in changes:
                        setattr(record, key, changes[key])
                if "metadata" in changes:
                    record.metadata_json = _dump_metadata(changes["metadata"])
                record.updated_at = max(utc_now(), current.updated_at)
                record.version = current.version + 1
                session.add(record)
                session.add(self._snapshot(record))
                session.flush()

                if "tags" in changes:
                    self._replace_tags(session, prompt_id, unique_tags(changes["tags"]))
                self._replace_variables(session, prompt_id, resolve_updated_variables(current, changes))
                session.commit()
                logger.info(f"Updated prompt {prompt_id} to version {current.version + 1}")
                return self._load(session, prompt_id)
            except PromptManagerError:
                session.rollback()
                raise
            except Exception as e:
                session.rollback()
                logger.error(f"Failed to update prompt {prompt_id}: {e}")
                raise StorageError(f"Failed to update prompt {prompt_id}", e) from e

    def delete(self, prompt_id: str, version: Optional[int] = None) -> bool:
        self._ensure_connected()
        with Session(self.engine) as session:
            try:
                conn = session.connection()
                if version is not None:
                    if session.get(PromptVersionRecord, (prompt_id, version)) is None:
                        return False
                    conn.execute(
                        delete(PromptVersionRecord)
                        .where(PromptVersionRecord.prompt_id == prompt_id)
                        .where(PromptVersionRecord.version == version)
                    )
                    session.commit()
                    logger.info(f"Deleted version {version} of prompt {prompt_id}")
                    return True

                if session.get(PromptRecord, prompt_id) is None:
                    return False
                conn.execute(delete(PromptTag).where(PromptTag.prompt_id == prompt_id))
                conn.execute(delete(PromptVariable).where(PromptVariable.prompt_id == prompt_id))
                conn.execute(delete(PromptVersionRecord).where(PromptVersionRecord.prompt_id == prompt_id))
                conn.execute(delete(PromptRecord).where(PromptRecord.id == prompt_id))
                session.commit()
            except Exception as e:
                session.rollback()
                logger.error(f"Failed to delete prompt {prompt_id}: {e}")
                raise StorageError(f"Failed to delete prompt {prompt_id}", e) from e

        logger.info(f"Deleted prompt {prompt_id}")
        return True

    def list_versions(self, prompt_id: str) -> List[int]:
        self._ensure_connected()
        query = (
            select(PromptVersionRecord.version)
            .where(PromptVersionRecord.prompt_id == prompt_id)
            .order_by(PromptVersionRecord.version)
        )
        try:
            with Session(self.engine) as session:
                return list(session.exec(query).all())
        except Exception as e:
            logger.error(f"Failed to list versions for prompt {prompt_id}: {e}")
            raise StorageError(f"Failed to list versions for prompt {prompt_id}", e) from e

    # --- helpers ---

    def _ensure_connected(self):
        if not self._connected:
            raise StorageError("Repository not connected")

    def _snapshot(self, record: PromptRecord) -> PromptVersionRecord:
        return PromptVersionRecord(
            prompt_id=record.id,
            version=record.version,
            name=record.name,
            content=record.content,
            description=record.description,
            is_template=record.is_template,
            category=record.category,
            metadata_json=record.metadata_json,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def _replace_tags(self, session: Session, prompt_id: str, tags: List[str]):
        conn = session.connection()
        conn.execute(delete(PromptTag).where(PromptTag.prompt_id == prompt_id))
        for name in tags:
            # 同名タグの同時作成は ON CONFLICT で吸収する
            conn.execute(
                text("INSERT INTO tags (name) VALUES (:name) ON CONFLICT (name) DO NOTHING"),
                {"name": name},
            )
            tag_id = conn.execute(select(Tag.id).where(Tag.name == name)).scalar_one()
            conn.execute(insert(PromptTag).values(prompt_id=prompt_id, tag_id=tag_id))

    def _replace_variables(self, session: Session, prompt_id: str, variables: List[str]):
        conn = session.connection()
        conn.execute(delete(PromptVariable).where(PromptVariable.prompt_id == prompt_id))
        for order, name in enumerate(variables):
            conn.execute(
                insert(PromptVariable).values(prompt_id=prompt_id, variable_name=name, variable_order=order)
            )

    def _tags_for(self, session: Session, prompt_id: str) -> List[str]:
        query = (
            select(Tag.name)
            .join(PromptTag, PromptTag.tag_id == Tag.id)
            .where(PromptTag.prompt_id == prompt_id)
            .order_by(Tag.name)
        )
        return list(session.exec(query).all())

    def _variables_for(self, session: Session, prompt_id: str) -> List[str]:
        query = (
            select(PromptVariable.variable_name)
            .where(PromptVariable.prompt_id == prompt_id)
            .order_by(PromptVariable.variable_order)
        )
        return list(session.exec(query).all())

    def _to_prompt(self, session: Session, record) -> Prompt:
        # タグ・変数はバージョンではなくプロンプトIDに紐づく (履歴取得時も現在の値)
        prompt_id = record.prompt_id if isinstance(record, PromptVersionRecord) else record.id
        return Prompt(
            id=prompt_id,
            name=record.name,
            content=record.content,
            description=record.description,
            is_template=record.is_template,
            variables=self._variables_for(session, prompt_id),
            tags=self._tags_for(session, prompt_id),
            category=record.category,
            metadata=_load_metadata(record.metadata_json),
            created_at=record.created_at,
            updated_at=record.updated_at,
            version=record.version,
        )

    def _load(self, session: Session, prompt_id: str, version: Optional[int] = None) -> Optional[Prompt]:
        if version is None:
            record = session.get(PromptRecord, prompt_id)
        else:
            record = session.get(PromptVersionRecord, (prompt_id, version))
        if record is None:
            return None
        return self._to_prompt(session, record)
