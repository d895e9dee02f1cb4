"""
Saving and loading diagram documents.

Loading is two-phase. The nodes are inserted in bulk first. Then each saved
connection is recreated once the render layer can resolve both of its anchors.
The layer may need layout passes before freshly inserted node visuals report
positions, so anchors are polled a bounded number of times with a fixed delay
between attempts. A connection whose anchors never resolve is dropped with a
warning; the rest of the document still loads.
"""

import asyncio
import json
from pathlib import Path
from typing import Callable, List, Optional, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

from .core import Diagram
from .errors import AnchorUnresolved, InvalidConnection, NotFound, StorageError
from .models import FORMAT_VERSION, AnchorRef, ConnectionRecord, DiagramDocument
from .render import RenderLayer
from .status import StatusSink
from .synchronizer import ConnectionSynchronizer

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_DELAY = 0.2

# ユーザー向けの汎用メッセージ（詳細はログにのみ出力する）
MSG_ACCESS_DENIED = "Unable to access file. Please check if you have sufficient permissions."
MSG_FILE_IN_USE = "File access error. Please ensure the file is not being used by another process."
MSG_NOT_FOUND = "The specified configuration file was not found."
MSG_INVALID_FORMAT = "The configuration file format is invalid or corrupted."
MSG_SERIALIZE = "Error occurred while serializing configuration."
MSG_DIALOG = "Unable to open file selection dialog."

TargetChooser = Callable[[str], Optional[Union[str, Path]]]


def save_document(diagram: Diagram) -> bytes:
    """ダイアグラムを保存形式のJSONに変換します。"""
    try:
        data = diagram.to_document().model_dump(mode="json", by_alias=True)
        return json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise StorageError(MSG_SERIALIZE) from e


def parse_document(data: Union[bytes, str]) -> DiagramDocument:
    """JSONを解析してドキュメントを返します。形式の誤りはStorageErrorになります。"""
    try:
        raw = json.loads(data)
        document = DiagramDocument.model_validate(raw)
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        raise StorageError(MSG_INVALID_FORMAT) from e

    ids = [node.id for node in document.nodes]
    if len(ids) != len(set(ids)):
        raise StorageError(MSG_INVALID_FORMAT)

    validate_version(document)
    return document


def validate_version(document: DiagramDocument):
    """Warns when the document was written by an incompatible format version."""
    if FORMAT_VERSION.split(".")[0] != document.format_version.split(".")[0]:
        logger.warning(
            "format_version_mismatch",
            supported=FORMAT_VERSION,
            document=document.format_version,
        )


class FileStorage:
    """
    File I/O collaborator.

    The load/save targets come from an explicit path or, when none is given,
    from a chooser callback (a file dialog in a desktop front end). A chooser
    returning None means the user cancelled. Every failure becomes a
    StorageError carrying a generic message, with the cause chained.
    """
    def __init__(self, chooser: Optional[TargetChooser] = None):
        self.chooser = chooser

    def _choose(self, purpose: str, path: Optional[Union[str, Path]]) -> Optional[Path]:
        if path is not None:
            return Path(path)
        if self.chooser is None:
            return None
        try:
            chosen = self.chooser(purpose)
        except Exception as e:
            logger.exception("file_chooser_failed", purpose=purpose)
            raise StorageError(MSG_DIALOG) from e
        return Path(chosen) if chosen else None

    def open_load_target(self, path: Optional[Union[str, Path]] = None) -> Optional[Path]:
        return self._choose("load", path)

    def open_save_target(self, path: Optional[Union[str, Path]] = None) -> Optional[Path]:
        return self._choose("save", path)

    def read_bytes(self, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise StorageError(MSG_NOT_FOUND) from e
        except PermissionError as e:
            raise StorageError(MSG_ACCESS_DENIED) from e
        except OSError as e:
            raise StorageError(MSG_FILE_IN_USE) from e

    def write_bytes(self, path: Path, data: bytes):
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except PermissionError as e:
            raise StorageError(MSG_ACCESS_DENIED) from e
        except OSError as e:
            raise StorageError(MSG_FILE_IN_USE) from e


class DroppedConnection(BaseModel):
    source_node_id: Optional[str] = None
    target_node_id: Optional[str] = None
    reason: str


class LoadReport(BaseModel):
    """読み込み結果の要約。"""
    nodes_loaded: int = 0
    connections_loaded: int = 0
    dropped: List[DroppedConnection] = Field(default_factory=list)


class DocumentGateway:
    """Saves the diagram to storage and runs the two-phase load protocol."""
    def __init__(
        self,
        diagram: Diagram,
        synchronizer: ConnectionSynchronizer,
        render_layer: RenderLayer,
        status: StatusSink,
        storage: Optional[FileStorage] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ):
        self.diagram = diagram
        self.synchronizer = synchronizer
        self.render_layer = render_layer
        self.status = status
        self.storage = storage or FileStorage()
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    # --- 保存 ---

    def save(self, path: Optional[Union[str, Path]] = None) -> Optional[Path]:
        """Write the diagram to a file. Returns the path written, or None if cancelled."""
        try:
            target = self.storage.open_save_target(path)
            if target is None:
                return None
            self.storage.write_bytes(target, save_document(self.diagram))
        except StorageError as e:
            logger.exception("save_failed", path=str(path) if path else None)
            self.status.error(f"Error saving file: {e}")
            raise
        logger.info("file_saved", path=str(target), nodes=self.diagram.node_count,
                    connections=len(self.diagram.connections))
        self.status.info("File save completed")
        return target

    # --- 読み込み ---

    async def load(self, path: Optional[Union[str, Path]] = None) -> Optional[LoadReport]:
        """Load a document file. Returns None if the user cancelled the target choice."""
        try:
            source = self.storage.open_load_target(path)
            if source is None:
                return None
            data = self.storage.read_bytes(source)
        except StorageError as e:
            logger.exception("load_failed", path=str(path) if path else None)
            self.status.error(f"Error loading file: {e}")
            raise
        return await self.load_bytes(data)

    async def load_bytes(self, data: Union[bytes, str]) -> LoadReport:
        """Replace the diagram with a serialized document. On a format error the diagram is untouched."""
        try:
            document = parse_document(data)
        except StorageError as e:
            logger.exception("load_failed")
            self.status.error(f"Error loading file: {e}")
            raise
        return await self.load_document(document)

    async def load_document(self, document: DiagramDocument) -> LoadReport:
        report = LoadReport()

        # フェーズ1: ノードを一括配置
        self.diagram.load_nodes(document.nodes)
        report.nodes_loaded = len(document.nodes)
        logger.info("nodes_loaded", count=report.nodes_loaded)

        # 描画レイヤーのレイアウトを待つ
        await self.render_layer.request_layout_pass()

        # フェーズ2: 接続を再作成
        for record in document.connections:
            reason = await self._restore_connection(record)
            if reason is None:
                report.connections_loaded += 1
            else:
                report.dropped.append(DroppedConnection(
                    source_node_id=record.source_node_id,
                    target_node_id=record.target_node_id,
                    reason=reason,
                ))

        logger.info("load_completed", nodes=report.nodes_loaded,
                    connections=report.connections_loaded, dropped=len(report.dropped))
        self.status.info(f"Modules on canvas: {self.diagram.node_count}")
        return report

    async def _restore_connection(self, record: ConnectionRecord) -> Optional[str]:
        """Recreate one saved connection. Returns the drop reason, or None on success."""
        source, target = record.source, record.target
        if source is None or target is None:
            logger.info("connection_dropped", reason="missing_id",
                        source=record.source_node_id, target=record.target_node_id)
            return "missing node id"

        for anchor in (source, target):
            if self.diagram.find_node(anchor.node_id) is None:
                logger.info("connection_dropped", reason="unknown_node",
                            source=source.node_id, target=target.node_id, missing=anchor.node_id)
                return f"unknown node '{anchor.node_id}'"

        try:
            await self._wait_for_anchor(source)
            await self._wait_for_anchor(target)
        except AnchorUnresolved as e:
            logger.warning("connection_dropped", reason="anchor_unresolved",
                           node_id=e.node_id, attempts=e.attempts)
            self.status.warn(f"Could not restore connection: {e}")
            return str(e)

        try:
            conn = self.diagram.add_connection(source, target)
        except InvalidConnection as e:
            logger.warning("connection_dropped", reason="invalid",
                           source=source.node_id, target=target.node_id, error=str(e))
            return f"invalid connection: {e}"
        except NotFound as e:
            # レイアウト待ちの間にノードが削除された
            logger.warning("connection_dropped", reason="node_removed",
                           source=source.node_id, target=target.node_id, error=str(e))
            return str(e)

        self.synchronizer.sync_connection(conn)
        logger.debug("connection_restored", connection_id=conn.id)
        return None

    async def _wait_for_anchor(self, anchor: AnchorRef):
        for attempt in range(1, self.max_retries + 1):
            position = self.render_layer.resolve_anchor_screen_position(anchor.node_id, anchor.kind)
            if position is not None:
                return
            logger.debug("anchor_pending", node_id=anchor.node_id,
                         kind=anchor.kind.value, attempt=attempt)
            await self.render_layer.request_layout_pass()
            await asyncio.sleep(self.retry_delay)
        raise AnchorUnresolved(anchor.node_id, self.max_retries)
