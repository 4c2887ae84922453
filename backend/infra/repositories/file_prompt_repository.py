import json
import os
import re
import shutil
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from config import settings
from domain.errors import ConflictError, NotFoundError, StorageError
from domain.models.prompt import CreatePromptArgs, ListPromptsArgs, Prompt, UpdatePromptArgs, parse_args, utc_now
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
from infra.storage.atomic import atomic_write_text
from infra.storage.file_lock import FileLock
from utils.logger import get_logger

logger = get_logger(__name__)

INDEX_FILE = "index.json"
VERSION_FILE_PATTERN = re.compile(r"^(\d+)\.json$")
# 一覧・フィルタ用に index.json に持たせる項目
INDEX_FIELDS = {
    "id", "name", "description", "is_template", "tags", "variables",
    "category", "created_at", "updated_at", "version",
}
UPDATABLE_FIELDS = ("name", "content", "description", "is_template", "category", "metadata")
# 生成IDは slug(<=100) + "-" + 8桁 なので切り詰めの対象にならない長さ
MAX_PATH_COMPONENT = 200


def sanitize_path_component(component: str) -> str:
    """パストラバーサルやファイル名に使えない文字を除去する"""
    cleaned = re.sub(r'[<>:"|?*\x00-\x1f]', "", component)
    cleaned = cleaned.replace("..", "")
    cleaned = cleaned.strip("/\\")
    cleaned = re.sub(r"[/\\]+", "-", cleaned)
    return cleaned[:MAX_PATH_COMPONENT] or "_"


def is_storable_id(prompt_id: str) -> bool:
    """サニタイズ後も変わらない ID のみ扱う (別名で他プロンプトのディレクトリを指さない)"""
    return bool(prompt_id) and sanitize_path_component(prompt_id) == prompt_id


def _parse_timestamp(value: str) -> datetime:
    # Python 3.10 の fromisoformat は末尾 Z を受け付けない
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class FilePromptRepository(PromptRepository):
    """
    ファイルベースのリポジトリ。

    <root>/index.json          id -> サマリ (最新バージョン番号を含む)
    <root>/<id>/<version>.json バージョン毎のスナップショット

    更新系は index.json のロックで直列化する。読み取りはロックを取らない。
    index とバージョンファイルは別々にアトミック書き込みされるため、
    クラッシュ時に両者がずれる可能性は残る。
    """

    def __init__(
        self,
        prompts_dir: Optional[str] = None,
        lock_retries: Optional[int] = None,
        lock_retry_interval: Optional[float] = None,
        lock_stale_seconds: Optional[float] = None,
    ):
        self.prompts_dir = os.path.abspath(prompts_dir or settings.PROMPTS_DIR)
        self.index_path = os.path.join(self.prompts_dir, INDEX_FILE)
        self._lock = FileLock(
            self.index_path,
            retries=settings.LOCK_RETRIES if lock_retries is None else lock_retries,
            retry_interval=settings.LOCK_RETRY_INTERVAL if lock_retry_interval is None else lock_retry_interval,
            stale_seconds=settings.LOCK_STALE_SECONDS if lock_stale_seconds is None else lock_stale_seconds,
        )
        self._connected = False

    # --- lifecycle ---

    def connect(self) -> None:
        try:
            os.makedirs(self.prompts_dir, exist_ok=True)
            if not os.path.exists(self.index_path):
                atomic_write_text(self.index_path, "{}")
        except OSError as e:
            logger.error(f"Failed to connect to file storage at {self.prompts_dir}: {e}")
            raise StorageError(f"Failed to connect to storage at {self.prompts_dir}", e) from e
        self._connected = True
        logger.info(f"Connected to file storage at {self.prompts_dir}")

    def disconnect(self) -> None:
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    def health_check(self) -> bool:
        try:
            self._ensure_connected()
            self._read_index()
            return True
        except Exception as e:
            logger.warning(f"File storage health check failed: {e}")
            return False

    # --- operations ---

    def save(self, data: CreateData) -> Prompt:
        self._ensure_connected()
        args: CreatePromptArgs = parse_args(CreatePromptArgs, data)

        now = utc_now()
        prompt = Prompt(
            id=generate_prompt_id(args.name),
            name=args.name,
            content=args.content,
            description=args.description,
            is_template=args.is_template,
            variables=resolve_variables(args.content, args.is_template),
            tags=unique_tags(args.tags),
            category=args.category,
            metadata=args.metadata,
            created_at=now,
            updated_at=now,
            version=1,
        )

        with self._lock:
            self._write_snapshot(prompt)
            index = self._read_index()
            index[prompt.id] = self._index_entry(prompt)
            self._write_index(index)

        logger.info(f"Saved prompt {prompt.id} (version 1)")
        return prompt

    def get_by_id(self, prompt_id: str, version: Optional[int] = None) -> Optional[Prompt]:
        self._ensure_connected()
        if not is_storable_id(prompt_id):
            return None
        entry = self._read_index().get(prompt_id)

        if version is None:
            if entry is None:
                return None
            return self._read_snapshot(prompt_id, entry["version"])

        snapshot = self._read_snapshot(prompt_id, version)
        if snapshot is None or entry is None:
            return snapshot
        # タグ・変数はバージョンではなくプロンプトIDに紐づく (履歴取得時も現在の値)
        return snapshot.model_copy(update={"tags": list(entry["tags"]), "variables": list(entry["variables"])})

    def list(self, filters: ListData = None) -> List[Prompt]:
        self._ensure_connected()
        args: ListPromptsArgs = parse_args(ListPromptsArgs, filters)

        entries = list(self._read_index().values())
        if args.category:
            entries = [e for e in entries if e.get("category") == args.category]
        if args.is_template is not None:
            entries = [e for e in entries if e["is_template"] == args.is_template]
        if args.tags:
            wanted = set(args.tags)
            entries = [e for e in entries if wanted.issubset(e["tags"])]

        # updated_at 降順 (同時刻は id 昇順)
        entries.sort(key=lambda e: e["id"])
        entries.sort(key=lambda e: _parse_timestamp(e["updated_at"]), reverse=True)
        entries = entries[args.offset:args.offset + args.limit]

        prompts = []
        for entry in entries:
            prompt = self._read_snapshot(entry["id"], entry["version"])
            if prompt is not None:
                prompts.append(prompt)
        return prompts

    def update(self, prompt_id: str, patch: UpdateData, expected_version: Optional[int] = None) -> Prompt:
        self._ensure_connected()
        changes = parse_args(UpdatePromptArgs, patch).changes()

        with self._lock:
            current = self.get_by_id(prompt_id)
            if current is None:
                raise NotFoundError("Prompt", prompt_id)
            if expected_version is not None and expected_version != current.version:
                raise ConflictError(prompt_id, expected_version, current.version)

            data = current.model_dump()
            for key in UPDATABLE_FIELDS:
                if key in changes:
                    data[key] = changes[key]
            if "tags" in changes:
                data["tags"] = unique_tags(changes["tags"])
            data["variables"] = resolve_updated_variables(current, changes)
            data["updated_at"] = max(utc_now(), current.updated_at)
            data["version"] = current.version + 1
            updated = Prompt(**data)

            self._write_snapshot(updated)
            index = self._read_index()
            index[prompt_id] = self._index_entry(updated)
            self._write_index(index)

        logger.info(f"Updated prompt {prompt_id} to version {updated.version}")
        return updated

    def delete(self, prompt_id: str, version: Optional[int] = None) -> bool:
        self._ensure_connected()
        if not is_storable_id(prompt_id):
            return False

        with self._lock:
            index = self._read_index()
            entry = index.get(prompt_id)

            if version is not None:
                try:
                    os.remove(self._snapshot_path(prompt_id, version))
                except FileNotFoundError:
                    return False
                except OSError as e:
                    raise StorageError(f"Failed to delete prompt {prompt_id} version {version}", e) from e
                # 最新バージョンを削除した場合は index からも外す
                if entry is not None and entry["version"] == version:
                    del index[prompt_id]
                    self._write_index(index)
                logger.info(f"Deleted version {version} of prompt {prompt_id}")
                return True

            prompt_dir = self._prompt_dir(prompt_id)
            dir_existed = os.path.isdir(prompt_dir)
            try:
                if dir_existed:
                    shutil.rmtree(prompt_dir)
            except OSError as e:
                raise StorageError(f"Failed to delete prompt {prompt_id}", e) from e
            if entry is not None:
                del index[prompt_id]
                self._write_index(index)

        if entry is None and not dir_existed:
            return False
        logger.info(f"Deleted prompt {prompt_id}")
        return True

    def list_versions(self, prompt_id: str) -> List[int]:
        self._ensure_connected()
        if not is_storable_id(prompt_id):
            return []
        try:
            names = os.listdir(self._prompt_dir(prompt_id))
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError(f"Failed to list versions for prompt {prompt_id}", e) from e

        versions = []
        for name in names:
            match = VERSION_FILE_PATTERN.match(name)
            if match:
                versions.append(int(match.group(1)))
        return sorted(versions)

    # --- helpers ---

    def _ensure_connected(self):
        if not self._connected:
            raise StorageError("Repository not connected")

    def _prompt_dir(self, prompt_id: str) -> str:
        return os.path.join(self.prompts_dir, sanitize_path_component(prompt_id))

    def _snapshot_path(self, prompt_id: str, version: int) -> str:
        return os.path.join(self._prompt_dir(prompt_id), f"{int(version)}.json")

    def _index_entry(self, prompt: Prompt) -> Dict[str, Any]:
        return prompt.model_dump(mode="json", include=INDEX_FIELDS)

    def _read_index(self) -> Dict[str, Dict[str, Any]]:
        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                index = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError("Failed to read index", e) from e
        if not isinstance(index, dict):
            raise StorageError(f"Malformed index at {self.index_path}")
        return index

    def _write_index(self, index: Dict[str, Dict[str, Any]]):
        try:
            atomic_write_text(self.index_path, json.dumps(index, ensure_ascii=False, indent=2))
        except OSError as e:
            raise StorageError("Failed to write index", e) from e

    def _read_snapshot(self, prompt_id: str, version: int) -> Optional[Prompt]:
        path = self._snapshot_path(prompt_id, version)
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read prompt {prompt_id}", e) from e
        try:
            return Prompt.model_validate_json(raw)
        except PydanticValidationError as e:
            raise StorageError(f"Corrupt prompt file {path}", e) from e

    def _write_snapshot(self, prompt: Prompt):
        try:
            atomic_write_text(
                self._snapshot_path(prompt.id, prompt.version),
                prompt.model_dump_json(indent=2),
            )
        except OSError as e:
            raise StorageError(f"Failed to write prompt {prompt.id}", e) from e
