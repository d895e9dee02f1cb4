#!/usr/bin/env python
"""
FBD Editorバックエンド（FastAPI）の起動スクリプト

使用方法:
    python run_server.py
    python run_server.py --config path/to/config.json --port 8000
"""

import argparse
import os
import sys
from pathlib import Path

import uvicorn

# 設定
BACKEND_PORT = 8000

# パス設定
PROJECT_ROOT = Path(__file__).resolve().parent
SRC_DIR = PROJECT_ROOT / "src"


def main():
    parser = argparse.ArgumentParser(description="FBD Editorバックエンドの起動")
    parser.add_argument("--config", type=str, default=None, help="設定ファイルのパス（デフォルトはconfig.json）")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="待ち受けアドレス")
    parser.add_argument("--port", type=int, default=BACKEND_PORT, help="待ち受けポート")
    args = parser.parse_args()

    # 設定ファイルのパスを環境変数に設定
    if args.config:
        config_path = Path(args.config).resolve()
        if not config_path.exists():
            print(f"Error: Config file not found: {config_path}")
            sys.exit(1)
        os.environ["FBD_EDITOR_CONFIG"] = str(config_path)
        print(f"Using config: {config_path}")

    sys.path.insert(0, str(SRC_DIR))
    print(f"Starting backend on port {args.port}...")
    try:
        uvicorn.run(
            "gui.server.main:create_app",
            factory=True,
            host=args.host,
            port=args.port,
            app_dir=str(SRC_DIR),
        )
    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    main()
