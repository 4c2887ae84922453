import contextlib
import os
import tempfile


def atomic_write_text(path: str, data: str):
    """
    一時ファイルに書き込み → fsync → rename で置き換える。
    書き込み途中でクラッシュしても既存ファイルは壊れない。
    """
    directory = os.path.dirname(path)
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise
