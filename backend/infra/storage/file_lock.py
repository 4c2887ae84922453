import fcntl
import os
import threading
import time
from typing import Dict, Optional

from domain.errors import StorageError
from utils.logger import get_logger

logger = get_logger(__name__)

# 同じファイルに対するプロセス内ロックは 1 つに集約する
_thread_locks: Dict[str, threading.Lock] = {}
_registry_lock = threading.Lock()


def _thread_lock_for(path: str) -> threading.Lock:
    with _registry_lock:
        lock = _thread_locks.get(path)
        if lock is None:
            lock = threading.Lock()
            _thread_locks[path] = lock
        return lock


class FileLock:
    """
    <path>.lock に対する排他ロック。
    プロセス内は threading.Lock、プロセス間は fcntl.flock で直列化する。
    flock はプロセス終了時に OS が解放するため、残留ロックは stale_seconds 以内に解消される。
    取得できない場合は retries 回まで再試行し、それでもダメなら StorageError。
    """

    def __init__(self, path: str, retries: int = 3, retry_interval: float = 0.1, stale_seconds: float = 20.0):
        self.path = os.path.abspath(path)
        self.lock_path = f"{self.path}.lock"
        self.retries = retries
        self.retry_interval = retry_interval
        self.stale_seconds = stale_seconds
        self._thread_lock = _thread_lock_for(self.path)
        self._fd: Optional[int] = None

    def acquire(self):
        deadline = time.monotonic() + self.stale_seconds
        if not self._thread_lock.acquire(timeout=self.stale_seconds):
            raise StorageError(f"Failed to acquire lock on {self.path}: timed out after {self.stale_seconds}s")

        try:
            fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            self._thread_lock.release()
            raise StorageError(f"Failed to open lock file {self.lock_path}", e) from e

        attempt = 0
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                self._fd = fd
                return
            except BlockingIOError:
                attempt += 1
                if attempt > self.retries or time.monotonic() >= deadline:
                    os.close(fd)
                    self._thread_lock.release()
                    raise StorageError(f"Failed to acquire lock on {self.path}: held by another process")
                logger.warning(f"Lock on {self.path} is busy, retrying ({attempt}/{self.retries})")
                time.sleep(self.retry_interval * attempt)
            except OSError as e:
                os.close(fd)
                self._thread_lock.release()
                raise StorageError(f"Failed to acquire lock on {self.path}", e) from e

    def release(self):
        fd, self._fd = self._fd, None
        try:
            if fd is not None:
                fcntl.flock(fd, fcntl.LOCK_UN)
                os.close(fd)
        finally:
            self._thread_lock.release()

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
