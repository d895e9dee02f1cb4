"""
ダイアグラムファイルをヘッドレスで読み込むスクリプト

使用方法:
    python run_headless.py <diagram.json>
    python run_headless.py diagram.json --output normalized.json
    python run_headless.py diagram.json --config path/to/config.json
"""

import argparse
import sys
from pathlib import Path

# srcディレクトリをパスに追加
project_root = Path(__file__).resolve().parent
src_dir = project_root / "src"
sys.path.insert(0, str(src_dir))

from gui.headless.headless_main import run_headless


def main():
    parser = argparse.ArgumentParser(description="ダイアグラムファイルをヘッドレスで読み込む")
    parser.add_argument("document_file", help="読み込むダイアグラムJSONファイルのパス")
    parser.add_argument("--output", type=str, default=None, help="正規化したドキュメントの保存先")
    parser.add_argument("--config", type=str, default=None, help="設定ファイルのパス（デフォルトはconfig.json）")
    args = parser.parse_args()

    document_file = Path(args.document_file)
    if not document_file.exists():
        print(f"Error: File not found: {document_file}")
        sys.exit(1)

    config_file = Path(args.config) if args.config else None
    if config_file and not config_file.exists():
        print(f"Error: Config file not found: {config_file}")
        sys.exit(1)

    sys.exit(run_headless(
        document_file=document_file,
        project_root=project_root,
        output_file=Path(args.output) if args.output else None,
        config_file=config_file,
    ))


if __name__ == "__main__":
    main()
