import logging
import os
from logging.handlers import RotatingFileHandler
import sys

# ログディレクトリの作成
# 環境変数 PROMPT_MANAGER_LOG_DIR が設定されていればそれを使用 (server.py経由)
# 設定されていなければ、このファイルからの相対パスを使用 (開発環境)
if "PROMPT_MANAGER_LOG_DIR" in os.environ:
    LOG_DIR = os.environ["PROMPT_MANAGER_LOG_DIR"]
else:
    BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    LOG_DIR = os.path.join(BASE_DIR, "logs")

LOG_LEVEL = os.environ.get("PROMPT_MANAGER_LOG_LEVEL", "INFO").upper()

os.makedirs(LOG_DIR, exist_ok=True)

def get_logger(name: str):
    """
    ファイル出力とコンソール出力を併用するロガーを取得する
    """
    logger = logging.getLogger(name)

    # ハンドラが重複して追加されないようにチェック
    if not logger.handlers:
        level = getattr(logging, LOG_LEVEL, logging.INFO)
        logger.setLevel(level)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        # 1. ファイルハンドラ (10MBごとにローテーション, 最大5世代)
        log_file = os.path.join(LOG_DIR, "prompt_manager.log")
        try:
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10*1024*1024,
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(level)
            logger.addHandler(file_handler)
        except OSError as e:
            # 権限エラーなどでファイル作成できない場合はコンソールのみ
            print(f"Failed to set up file logging: {e}", file=sys.stderr)

        # 2. コンソールハンドラ (stderr: ターミナル確認用)
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(level)
        logger.addHandler(console_handler)

    return logger
