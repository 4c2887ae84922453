import fcntl
import json
import os
import threading
import pytest

from domain.errors import NotFoundError, StorageError
from infra.repositories.file_prompt_repository import FilePromptRepository, sanitize_path_component
from infra.storage.atomic import atomic_write_text
from infra.storage.file_lock import FileLock

def read_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)

def test_connect_creates_index(tmp_path):
    root = tmp_path / "store"
    repository = FilePromptRepository(str(root))
    repository.connect()
    assert read_json(root / "index.json") == {}
    assert repository.health_check() is True

def test_layout_on_disk(file_repository):
    prompt = file_repository.save({"name": "Layout", "content": "{{x}}", "is_template": True, "tags": ["t"]})
    file_repository.update(prompt.id, {"content": "{{y}}"})

    root = file_repository.prompts_dir
    index = read_json(os.path.join(root, "index.json"))
    entry = index[prompt.id]
    assert entry["version"] == 2
    assert entry["variables"] == ["y"]
    assert entry["tags"] == ["t"]
    # 本文は index に持たない
    assert "content" not in entry

    assert sorted(os.listdir(os.path.join(root, prompt.id))) == ["1.json", "2.json"]
    assert read_json(os.path.join(root, prompt.id, "1.json"))["content"] == "{{x}}"

def test_sanitize_path_component():
    assert sanitize_path_component("simple-id") == "simple-id"
    assert sanitize_path_component("../../etc/passwd") == "etc-passwd"
    assert sanitize_path_component('a<b>c:"d|e?f*') == "abcdef"
    assert sanitize_path_component("..") == "_"
    assert len(sanitize_path_component("x" * 300)) == 200

def test_traversal_ids_stay_inside_root(file_repository, tmp_path):
    assert file_repository.get_by_id("../../outside") is None
    assert file_repository.delete("../../outside") is False
    assert file_repository.list_versions("../outside") == []
    assert os.path.commonpath([file_repository._prompt_dir("../../x"), file_repository.prompts_dir]) == file_repository.prompts_dir

def test_aliased_ids_do_not_reach_other_prompts(file_repository):
    """サニタイズで同じディレクトリに落ちる別名 ID は存在しない ID として扱う"""
    real = file_repository.save({"name": "Real", "content": "c"})
    file_repository.update(real.id, {"content": "c2"})

    for alias in (real.id + "<", real.id + "..", "/" + real.id, real.id + "?"):
        assert file_repository.get_by_id(alias) is None
        assert file_repository.get_by_id(alias, 1) is None
        assert file_repository.list_versions(alias) == []
        assert file_repository.delete(alias) is False
        assert file_repository.delete(alias, 1) is False
        with pytest.raises(NotFoundError):
            file_repository.update(alias, {"content": "hijacked"})

    assert file_repository.list_versions(real.id) == [1, 2]
    assert file_repository.get_by_id(real.id).content == "c2"
    assert real.id in read_json(file_repository.index_path)

def test_longest_name_produces_usable_id(file_repository):
    prompt = file_repository.save({"name": "n" * 100, "content": "c"})
    assert len(prompt.id) == 109
    assert file_repository.get_by_id(prompt.id).id == prompt.id
    assert file_repository.delete(prompt.id) is True

def test_timestamps_are_utc(file_repository):
    prompt = file_repository.save({"name": "T", "content": "c"})
    updated = file_repository.update(prompt.id, {"content": "c2"})
    assert prompt.created_at.utcoffset().total_seconds() == 0
    assert updated.updated_at >= prompt.updated_at
    stored = file_repository.list()[0]
    assert stored.updated_at == updated.updated_at

def test_historical_version_uses_current_tags(file_repository):
    prompt = file_repository.save({"name": "T", "content": "c", "tags": ["old"]})
    file_repository.update(prompt.id, {"tags": ["new"]})
    assert file_repository.get_by_id(prompt.id, 1).tags == ["new"]

def test_delete_current_version_removes_index_entry(file_repository):
    prompt = file_repository.save({"name": "T", "content": "c"})
    file_repository.update(prompt.id, {"content": "c2"})

    assert file_repository.delete(prompt.id, 2) is True
    assert file_repository.get_by_id(prompt.id) is None
    assert file_repository.get_by_id(prompt.id, 1).content == "c"
    with pytest.raises(NotFoundError):
        file_repository.update(prompt.id, {"content": "c3"})

def test_tags_keep_insertion_order(file_repository):
    prompt = file_repository.save({"name": "T", "content": "c", "tags": ["zeta", "alpha", "zeta"]})
    assert file_repository.get_by_id(prompt.id).tags == ["zeta", "alpha"]

def test_corrupt_index_raises_storage_error(file_repository):
    with open(file_repository.index_path, "w", encoding="utf-8") as f:
        f.write("{not json")
    with pytest.raises(StorageError):
        file_repository.list()
    assert file_repository.health_check() is False

def test_corrupt_version_file_raises_storage_error(file_repository):
    prompt = file_repository.save({"name": "T", "content": "c"})
    with open(os.path.join(file_repository.prompts_dir, prompt.id, "1.json"), "w", encoding="utf-8") as f:
        f.write('{"id": 1}')
    with pytest.raises(StorageError):
        file_repository.get_by_id(prompt.id)

def test_atomic_write_replaces_content(tmp_path):
    path = tmp_path / "sub" / "data.json"
    atomic_write_text(str(path), "first")
    atomic_write_text(str(path), "second")
    assert path.read_text(encoding="utf-8") == "second"
    # 一時ファイルは残らない
    assert os.listdir(tmp_path / "sub") == ["data.json"]

def test_atomic_write_failure_keeps_original(tmp_path, mocker):
    path = tmp_path / "data.json"
    atomic_write_text(str(path), "original")
    mocker.patch("infra.storage.atomic.os.replace", side_effect=OSError("rename failed"))

    with pytest.raises(OSError):
        atomic_write_text(str(path), "new")
    assert path.read_text(encoding="utf-8") == "original"
    assert os.listdir(tmp_path) == ["data.json"]

def test_write_failure_is_wrapped(file_repository, mocker):
    mocker.patch(
        "infra.repositories.file_prompt_repository.atomic_write_text",
        side_effect=OSError("disk full"),
    )
    with pytest.raises(StorageError) as exc_info:
        file_repository.save({"name": "T", "content": "c"})
    assert isinstance(exc_info.value.cause, OSError)

def test_concurrent_saves_are_serialized(file_repository):
    errors = []

    def worker(n):
        try:
            for i in range(5):
                file_repository.save({"name": f"w{n}-{i}", "content": "c"})
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(read_json(file_repository.index_path)) == 20
    assert len(file_repository.list({"limit": 100})) == 20

def test_concurrent_saves_with_same_name(file_repository):
    results = []
    errors = []

    def worker():
        try:
            results.append(file_repository.save({"name": "Same Name", "content": "c"}))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    ids = {p.id for p in results}
    assert len(ids) == 2
    assert all(prompt_id.startswith("same-name-") for prompt_id in ids)
    assert set(read_json(file_repository.index_path)) == ids
    assert {p.id for p in file_repository.list()} == ids

def test_concurrent_updates_produce_distinct_versions(file_repository):
    prompt = file_repository.save({"name": "Counter", "content": "0"})
    results = []

    def worker(n):
        results.append(file_repository.update(prompt.id, {"content": str(n)}).version)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == [2, 3, 4, 5, 6]
    assert file_repository.list_versions(prompt.id) == [1, 2, 3, 4, 5, 6]

def test_lock_held_by_another_process_fails_after_retries(file_repository):
    """別プロセスが保持している状態を別 fd の flock で再現する"""
    fd = os.open(file_repository.index_path + ".lock", os.O_RDWR | os.O_CREAT)
    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    try:
        with pytest.raises(StorageError) as exc_info:
            file_repository.save({"name": "Blocked", "content": "c"})
        assert "lock" in str(exc_info.value)
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)

    assert file_repository.save({"name": "Unblocked", "content": "c"}).version == 1

def test_lock_retries_then_succeeds(tmp_path, mocker):
    lock = FileLock(str(tmp_path / "index.json"), retries=3, retry_interval=0.001)
    real_flock = fcntl.flock
    calls = {"n": 0}

    def flaky_flock(fd, op):
        if op & fcntl.LOCK_EX and calls["n"] < 2:
            calls["n"] += 1
            raise BlockingIOError()
        return real_flock(fd, op)

    mocker.patch("infra.storage.file_lock.fcntl.flock", side_effect=flaky_flock)
    with lock:
        assert calls["n"] == 2
    # 解放後は再取得できる
    with lock:
        pass
