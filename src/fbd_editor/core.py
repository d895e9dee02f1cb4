from typing import Any, Dict, Iterable, List, Optional

import structlog
from pydantic import BaseModel, Field, PrivateAttr

from .errors import InvalidConnection, NotFound
from .events import ChangeKind, ChangeNotifier
from .models import AnchorKind, AnchorRef, Connection, DiagramDocument, Node, generate_id

logger = structlog.get_logger(__name__)

# update_attributes で変更可能な属性
EDITABLE_ATTRIBUTES = ("name", "type", "selected_message", "set_value", "comparison_operator", "opc_node_id")


class Diagram(BaseModel):
    """
    ダイアグラム全体のグラフ構造を表すモデル。
    ノードと接続の唯一の所有者で、変更はすべてnotifierを通じて通知されます。
    """
    model_config = {"arbitrary_types_allowed": True}

    id: str = Field(default_factory=lambda: generate_id("diagram"))
    nodes: List[Node] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)
    notifier: ChangeNotifier = Field(default_factory=ChangeNotifier, exclude=True)

    # ノードID -> ノード、接続点 -> 所有ノードID、ノードID -> 接続ID のインデックス
    _node_index: Dict[str, Node] = PrivateAttr(default_factory=dict)
    _anchor_index: Dict[AnchorRef, str] = PrivateAttr(default_factory=dict)
    _connection_index: Dict[str, Connection] = PrivateAttr(default_factory=dict)
    _node_connections: Dict[str, List[str]] = PrivateAttr(default_factory=dict)
    _selected_node_id: Optional[str] = PrivateAttr(default=None)
    _selected_connection_id: Optional[str] = PrivateAttr(default=None)

    def model_post_init(self, __context: Any) -> None:
        self._rebuild_index()

    # --- インデックス管理 ---

    def _rebuild_index(self):
        self._node_index.clear()
        self._anchor_index.clear()
        self._connection_index.clear()
        self._node_connections.clear()
        for node in self.nodes:
            if node.id in self._node_index:
                raise ValueError(f"Duplicate node id: {node.id}")
            self._index_node(node)
        for conn in self.connections:
            self._index_connection(conn)

    def _index_node(self, node: Node):
        self._node_index[node.id] = node
        for kind in AnchorKind:
            self._anchor_index[AnchorRef(node.id, kind)] = node.id
        self._node_connections.setdefault(node.id, [])

    def _unindex_node(self, node_id: str):
        self._node_index.pop(node_id, None)
        for kind in AnchorKind:
            self._anchor_index.pop(AnchorRef(node_id, kind), None)
        self._node_connections.pop(node_id, None)

    def _index_connection(self, conn: Connection):
        self._connection_index[conn.id] = conn
        for node_id in {conn.source_node_id, conn.target_node_id}:
            self._node_connections.setdefault(node_id, []).append(conn.id)

    def _unindex_connection(self, conn: Connection):
        self._connection_index.pop(conn.id, None)
        for node_id in {conn.source_node_id, conn.target_node_id}:
            ids = self._node_connections.get(node_id)
            if ids and conn.id in ids:
                ids.remove(conn.id)

    # --- 参照 ---

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    def find_node(self, node_id: str) -> Optional[Node]:
        return self._node_index.get(node_id)

    def get_node(self, node_id: str) -> Node:
        node = self._node_index.get(node_id)
        if node is None:
            raise NotFound(f"Node '{node_id}' not found")
        return node

    def find_connection(self, connection_id: str) -> Optional[Connection]:
        return self._connection_index.get(connection_id)

    def get_connection(self, connection_id: str) -> Connection:
        conn = self._connection_index.get(connection_id)
        if conn is None:
            raise NotFound(f"Connection '{connection_id}' not found")
        return conn

    def connections_of(self, node_id: str) -> List[Connection]:
        """ノードを始点または終点に持つ接続の一覧。"""
        return [self._connection_index[cid] for cid in self._node_connections.get(node_id, [])]

    def anchor_owner(self, anchor: AnchorRef) -> Optional[str]:
        """接続点を所有するノードID。未登録ならNone。"""
        return self._anchor_index.get(anchor)

    def anchors_of(self, node_id: str) -> List[AnchorRef]:
        if node_id not in self._node_index:
            return []
        return [AnchorRef(node_id, kind) for kind in AnchorKind]

    @property
    def selected_node(self) -> Optional[Node]:
        return self.find_node(self._selected_node_id) if self._selected_node_id else None

    @property
    def selected_connection(self) -> Optional[Connection]:
        if self._selected_connection_id is None:
            return None
        return self.find_connection(self._selected_connection_id)

    # --- ノード操作 ---

    def add_node(self, node: Node) -> Node:
        """ノードをグラフに追加します。IDはドキュメント内で一意である必要があります。"""
        if node.id in self._node_index:
            raise ValueError(f"Duplicate node id: {node.id}")
        self.nodes.append(node)
        self._index_node(node)
        logger.info("node_added", node_id=node.id, type=node.type.value, x=node.x, y=node.y)
        self.notifier.emit(ChangeKind.NODE_ADDED, node.id)
        if node.selected:
            # 保存時に選択されていたノードは選択状態を復元する
            self._set_selection(node.id, None)
        return node

    def clone(self, node_id: str) -> Node:
        """IDのみ新しいノードの複製を返します（グラフには追加しません）。"""
        clone = self.get_node(node_id).clone()
        logger.info("node_cloned", original_id=node_id, new_id=clone.id)
        return clone

    def connections_within(self, node_id: str) -> List[Connection]:
        """
        ノードに接続された接続と、始点または終点がノードの矩形内にある接続。
        順序はconnectionsの並び順です。
        """
        node = self._node_index.get(node_id)
        if node is None:
            return []
        return [
            c for c in self.connections
            if c.touches(node_id) or node.contains(c.start_point) or node.contains(c.end_point)
        ]

    def remove_node(self, node_id: str) -> bool:
        """ノードと、端点がノードの矩形内にある接続をすべて削除します。存在しないIDは何もしません。"""
        node = self._node_index.get(node_id)
        if node is None:
            return False

        for conn in self.connections_within(node_id):
            self._remove_connection(conn)

        if self._selected_node_id == node_id:
            self._selected_node_id = None
        self.nodes.remove(node)
        self._unindex_node(node_id)
        logger.info("node_removed", node_id=node_id)
        self.notifier.emit(ChangeKind.NODE_REMOVED, node_id)
        return True

    def update_geometry(self, node_id: str, x: float, y: float, width: float, height: float) -> bool:
        """ノードの位置とサイズを更新します。存在しないIDは何もしません。"""
        node = self._node_index.get(node_id)
        if node is None:
            return False
        node.x, node.y, node.width, node.height = x, y, width, height
        self.notifier.emit(ChangeKind.GEOMETRY_CHANGED, node_id)
        return True

    def update_attributes(self, node_id: str, **attributes: Any) -> bool:
        """名前やメッセージ等の属性を検証した上で更新します。"""
        node = self._node_index.get(node_id)
        if node is None:
            return False
        unknown = set(attributes) - set(EDITABLE_ATTRIBUTES)
        if unknown:
            raise ValueError(f"Attributes not editable: {sorted(unknown)}")

        data = node.model_dump()
        type_changed = "type" in attributes and attributes["type"] != node.type
        if type_changed and "selected_message" not in attributes:
            data["selected_message"] = ""
        data.update(attributes)
        validated = Node.model_validate(data)

        for name in EDITABLE_ATTRIBUTES:
            setattr(node, name, getattr(validated, name))
        logger.info("node_attributes_changed", node_id=node_id, attributes=sorted(attributes))
        self.notifier.emit(ChangeKind.ATTRIBUTES_CHANGED, node_id)
        return True

    # --- 接続操作 ---

    def add_connection(self, source: AnchorRef, target: AnchorRef) -> Connection:
        """
        2つの接続点を結ぶ接続を追加します。
        種類が同じ接続点同士、または同一ノード内の接続はInvalidConnectionで拒否されます。
        """
        source = AnchorRef(source[0], AnchorKind(source[1]))
        target = AnchorRef(target[0], AnchorKind(target[1]))
        if source.kind == target.kind:
            raise InvalidConnection("Both connection points are of the same type")
        if source.node_id == target.node_id:
            raise InvalidConnection("Cannot connect to the same module")
        for anchor in (source, target):
            if self.anchor_owner(anchor) is None:
                raise NotFound(f"Node '{anchor.node_id}' not found")

        conn = Connection(
            source_node_id=source.node_id,
            target_node_id=target.node_id,
            source_anchor=source.kind,
            target_anchor=target.kind,
        )
        self.connections.append(conn)
        self._index_connection(conn)
        logger.info("connection_added", connection_id=conn.id,
                    source=source.node_id, target=target.node_id)
        self.notifier.emit(ChangeKind.CONNECTION_ADDED, conn.id)
        return conn

    def _remove_connection(self, conn: Connection):
        if self._selected_connection_id == conn.id:
            self._selected_connection_id = None
        self.connections.remove(conn)
        self._unindex_connection(conn)
        logger.info("connection_removed", connection_id=conn.id)
        self.notifier.emit(ChangeKind.CONNECTION_REMOVED, conn.id)

    def remove_connection(self, source_node_id: str, target_node_id: str) -> int:
        """指定したノードの組を結ぶ接続を削除し、削除した件数を返します。"""
        matching = [
            c for c in self.connections_of(source_node_id)
            if c.source_node_id == source_node_id and c.target_node_id == target_node_id
        ]
        for conn in matching:
            self._remove_connection(conn)
        return len(matching)

    def remove_connection_by_id(self, connection_id: str) -> bool:
        conn = self._connection_index.get(connection_id)
        if conn is None:
            return False
        self._remove_connection(conn)
        return True

    # --- 選択 ---

    def _set_selection(self, node_id: Optional[str], connection_id: Optional[str]):
        previous_node = self.selected_node
        previous_conn = self.selected_connection
        if previous_node is not None:
            previous_node.selected = False
        if previous_conn is not None:
            previous_conn.selected = False

        self._selected_node_id = node_id
        self._selected_connection_id = connection_id
        if node_id is not None:
            self._node_index[node_id].selected = True
        if connection_id is not None:
            self._connection_index[connection_id].selected = True
        self.notifier.emit(ChangeKind.SELECTION_CHANGED, node_id or connection_id or "")

    def select_node(self, node_id: str) -> bool:
        """ノードを選択し、それ以前の選択（ノード・接続）を解除します。"""
        if node_id not in self._node_index:
            return False
        self._set_selection(node_id, None)
        return True

    def select_connection(self, connection_id: str) -> bool:
        if connection_id not in self._connection_index:
            return False
        self._set_selection(None, connection_id)
        return True

    def clear_selection(self):
        if self._selected_node_id is None and self._selected_connection_id is None:
            return
        self._set_selection(None, None)

    def delete_selected(self) -> bool:
        """選択中のノード（接続ごと）または接続を削除します。"""
        if self._selected_node_id is not None:
            return self.remove_node(self._selected_node_id)
        if self._selected_connection_id is not None:
            return self.remove_connection_by_id(self._selected_connection_id)
        return False

    # --- 一括操作 ---

    def clear(self):
        """キャンバスを空にします。"""
        self.nodes.clear()
        self.connections.clear()
        self._selected_node_id = None
        self._selected_connection_id = None
        self._rebuild_index()
        logger.info("diagram_cleared", diagram_id=self.id)
        self.notifier.emit(ChangeKind.CLEARED, self.id)

    def load_nodes(self, nodes: Iterable[Node]):
        """既存の内容を破棄してノードを一括で配置します（接続は含みません）。"""
        nodes = list(nodes)
        seen = set()
        for node in nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id: {node.id}")
            seen.add(node.id)

        self.clear()
        for node in nodes:
            self.add_node(node)

    def to_document(self) -> DiagramDocument:
        return DiagramDocument(
            nodes=[node.model_copy() for node in self.nodes],
            connections=[conn.to_record() for conn in self.connections],
        )
