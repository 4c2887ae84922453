import os
import uvicorn

if __name__ == "__main__":
    # 設定の読み込みと環境変数のセットアップ
    # これを最初に行うことで、後続のインポートでロガーが正しいパスを使用できる
    from config import settings
    settings.setup_environment()

    # アプリケーションデータディレクトリの確保
    os.makedirs(settings.USER_DATA_DIR, exist_ok=True)

    from main import app

    port = int(os.environ.get("PROMPT_MANAGER_PORT", settings.PROMPT_MANAGER_PORT))

    print(f"Starting Prompt Manager on port {port}...")
    print(f"User Data Directory: {settings.USER_DATA_DIR}")
    print(f"Storage Backend: {settings.STORAGE_BACKEND}")
    uvicorn.run(app, host="127.0.0.1", port=port, reload=False, workers=1)
