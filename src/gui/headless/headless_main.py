"""
ダイアグラムファイルをヘッドレスで読み込み、内容を検証・表示するモジュール

使用方法:
    python run_headless.py <diagram.json>
    python run_headless.py diagram.json --output normalized.json
"""

import asyncio
from pathlib import Path

from fbd_editor.errors import StorageError
from fbd_editor.persistence import LoadReport
from fbd_editor.session import EditorSession
from fbd_editor.settings import init_settings


def print_nodes(session: EditorSession) -> None:
    """配置されたノードの一覧を表示"""
    for node in session.diagram.nodes:
        marker = "*" if node.selected else " "
        print(
            f"  {marker} {node.name} [{node.type.value}] "
            f"({node.x:.0f}, {node.y:.0f}) {node.width:.0f}x{node.height:.0f} "
            f"message={node.selected_message}"
        )


def print_connections(session: EditorSession) -> None:
    """接続と、同期後の端点座標を表示"""
    diagram = session.diagram
    for conn in diagram.connections:
        source = diagram.get_node(conn.source_node_id)
        target = diagram.get_node(conn.target_node_id)
        print(
            f"    {source.name}.{conn.source_anchor.value} -> {target.name}.{conn.target_anchor.value} "
            f"({conn.start_point.x:.0f}, {conn.start_point.y:.0f}) -> "
            f"({conn.end_point.x:.0f}, {conn.end_point.y:.0f})"
        )


def print_report(report: LoadReport) -> None:
    print("\nDiagram structure:")
    print(f"  Nodes: {report.nodes_loaded}")
    print(f"  Connections: {report.connections_loaded}")
    if report.dropped:
        print(f"  Dropped connections: {len(report.dropped)}")
        for dropped in report.dropped:
            print(f"    {dropped.source_node_id} -> {dropped.target_node_id}: {dropped.reason}")


def run_headless(
    document_file: Path,
    project_root: Path,
    output_file: Path | None = None,
    config_file: Path | None = None,
) -> int:
    """
    ダイアグラムを読み込み、構造を表示する

    Args:
        document_file: ダイアグラムJSONファイルのパス
        project_root: プロジェクトルートディレクトリ
        output_file: 正規化したドキュメントの保存先（Noneの場合は保存しない）
        config_file: 設定ファイルのパス（Noneの場合はproject_root/config.json）

    Returns:
        終了コード（0=成功、1=読み込みまたは保存に失敗）
    """
    # 設定を初期化
    if config_file is None:
        config_file = project_root / "config.json"
    settings_manager = init_settings(config_file)
    session = EditorSession(settings=settings_manager)

    print(f"Loading diagram from: {document_file}")
    try:
        report = asyncio.run(session.load(document_file))
    except StorageError as e:
        print(f"Error: {e}")
        return 1

    print_report(report)
    print("\nNodes:")
    print_nodes(session)
    if session.diagram.connections:
        print("\nConnections:")
        print_connections(session)

    if output_file is not None:
        try:
            session.save(output_file)
        except StorageError as e:
            print(f"Error: {e}")
            return 1
        print(f"\nSaved normalized diagram to: {output_file}")

    print(f"\n{session.status.message}")
    return 0
