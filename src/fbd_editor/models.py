import math
import uuid
from enum import Enum
from typing import Any, List, NamedTuple, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .block_def import BlockType, available_messages

FORMAT_VERSION = "1.0.0"


def generate_id(prefix: str) -> str:
    """ユニークなIDを生成します。"""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class Point(BaseModel):
    """キャンバス座標系の点。"""
    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0

    def distance_to(self, other: "Point") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def offset(self, dx: float, dy: float) -> "Point":
        return Point(x=self.x + dx, y=self.y + dy)


class AnchorKind(str, Enum):
    """ノードの接続点の種類。"""
    INPUT = "input"
    OUTPUT = "output"

    @property
    def opposite(self) -> "AnchorKind":
        return AnchorKind.OUTPUT if self is AnchorKind.INPUT else AnchorKind.INPUT

    @classmethod
    def _missing_(cls, value: Any):
        # 旧形式の接続点名（InputConnection / OutputConnection）も受け付ける
        if isinstance(value, str):
            lowered = value.lower()
            for member in cls:
                if lowered == member.value or lowered == f"{member.value}connection":
                    return member
        return None


class AnchorRef(NamedTuple):
    """接続点の識別子（所有ノードID + 種類）。"""
    node_id: str
    kind: AnchorKind


class ComparisonOperator(str, Enum):
    GREATER_THAN = "GreaterThan"
    EQUAL = "Equal"
    LESS_THAN = "LessThan"


def _enum_from_index(enum_cls, value: Any) -> Any:
    """数値で保存された列挙値を宣言順で解決します。"""
    if isinstance(value, int) and not isinstance(value, bool):
        members = list(enum_cls)
        if not 0 <= value < len(members):
            raise ValueError(f"{enum_cls.__name__} index out of range: {value}")
        return members[value]
    return value


class Node(BaseModel):
    """キャンバスに配置されたファンクションブロックを表すモデル。"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: generate_id("node"), frozen=True)
    type: BlockType = Field(
        default=BlockType.TOOL_STATUS,
        validation_alias=AliasChoices("type", "moduleType", "module_type"),
        serialization_alias="type",
    )
    name: str = "New Module"
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    selected: bool = Field(
        default=False,
        validation_alias=AliasChoices("selected", "isSelected", "is_selected"),
        serialization_alias="selected",
    )
    # ブロック種別ごとの属性
    selected_message: str = Field(
        default="",
        validation_alias=AliasChoices("selectedMessage", "selected_message", "selectedSecsMessage"),
        serialization_alias="selectedMessage",
    )
    set_value: float = 0.0
    comparison_operator: ComparisonOperator = Field(
        default=ComparisonOperator.EQUAL,
        validation_alias=AliasChoices("comparisonOperator", "comparison_operator", "selectedOperator"),
        serialization_alias="comparisonOperator",
    )
    opc_node_id: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _type_from_index(cls, value: Any) -> Any:
        return _enum_from_index(BlockType, value)

    @field_validator("comparison_operator", mode="before")
    @classmethod
    def _operator_from_index(cls, value: Any) -> Any:
        return _enum_from_index(ComparisonOperator, value)

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, value: Any) -> Any:
        return "New Module" if value is None else value

    @field_validator("x", "y", "width", "height", "set_value", mode="before")
    @classmethod
    def _default_number(cls, value: Any) -> Any:
        return 0.0 if value is None else value

    @model_validator(mode="after")
    def _ensure_selected_message(self) -> "Node":
        # 選択メッセージが空、または種別の候補にない場合は先頭の候補を選ぶ
        messages = available_messages(self.type)
        if messages and self.selected_message not in messages:
            self.selected_message = messages[0]
        return self

    @property
    def available_messages(self) -> List[str]:
        """ブロック種別から導出されるメッセージ候補（保存対象外）。"""
        return available_messages(self.type)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(left, top, right, bottom)"""
        return self.x, self.y, self.x + self.width, self.y + self.height

    def contains(self, point: Point, margin: float = 0.0) -> bool:
        left, top, right, bottom = self.bounds
        return (left - margin <= point.x <= right + margin
                and top - margin <= point.y <= bottom + margin)

    def clone(self) -> "Node":
        """IDだけを新しく採番した複製を作成します。選択状態は引き継ぎません。"""
        return self.model_copy(update={"id": generate_id("node"), "selected": False})


class Connection(BaseModel):
    """ノード間の接続を表すモデル。start_point / end_pointは派生値のキャッシュ。"""
    id: str = Field(default_factory=lambda: generate_id("conn"), frozen=True)
    source_node_id: str
    target_node_id: str
    source_anchor: AnchorKind = AnchorKind.OUTPUT
    target_anchor: AnchorKind = AnchorKind.INPUT
    start_point: Point = Field(default_factory=Point)
    end_point: Point = Field(default_factory=Point)
    selected: bool = False

    @property
    def source(self) -> AnchorRef:
        return AnchorRef(self.source_node_id, self.source_anchor)

    @property
    def target(self) -> AnchorRef:
        return AnchorRef(self.target_node_id, self.target_anchor)

    def touches(self, node_id: str) -> bool:
        return self.source_node_id == node_id or self.target_node_id == node_id

    def to_record(self) -> "ConnectionRecord":
        return ConnectionRecord(
            source_node_id=self.source_node_id,
            target_node_id=self.target_node_id,
            source_anchor_kind=self.source_anchor,
            target_anchor_kind=self.target_anchor,
            start_point=self.start_point,
            end_point=self.end_point,
        )


class ConnectionRecord(BaseModel):
    """ドキュメントに保存される接続。座標は診断用で、再読込時の正とはしない。"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    source_node_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("sourceNodeId", "source_node_id", "sourceModuleId"),
        serialization_alias="sourceNodeId",
    )
    target_node_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("targetNodeId", "target_node_id", "targetModuleId"),
        serialization_alias="targetNodeId",
    )
    source_anchor_kind: Optional[AnchorKind] = Field(
        default=None,
        validation_alias=AliasChoices("sourceAnchorKind", "source_anchor_kind", "sourceConnectorName"),
        serialization_alias="sourceAnchorKind",
    )
    target_anchor_kind: Optional[AnchorKind] = Field(
        default=None,
        validation_alias=AliasChoices("targetAnchorKind", "target_anchor_kind", "targetConnectorName"),
        serialization_alias="targetAnchorKind",
    )
    start_point: Optional[Point] = None
    end_point: Optional[Point] = None

    @field_validator("source_anchor_kind", "target_anchor_kind", mode="before")
    @classmethod
    def _anchor_kind(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        if isinstance(value, str):
            return AnchorKind(value)
        return value

    def anchor_kinds(self) -> Tuple[AnchorKind, AnchorKind]:
        """
        (source, target) の接続点種別。片方だけ保存されている場合はもう片方をその反対とし、
        どちらもなければ output -> input とします。
        """
        source, target = self.source_anchor_kind, self.target_anchor_kind
        if source is None and target is None:
            return AnchorKind.OUTPUT, AnchorKind.INPUT
        if source is None:
            return target.opposite, target
        if target is None:
            return source, source.opposite
        return source, target

    @property
    def source(self) -> Optional[AnchorRef]:
        if self.source_node_id is None:
            return None
        return AnchorRef(self.source_node_id, self.anchor_kinds()[0])

    @property
    def target(self) -> Optional[AnchorRef]:
        if self.target_node_id is None:
            return None
        return AnchorRef(self.target_node_id, self.anchor_kinds()[1])


class DiagramDocument(BaseModel):
    """保存形式のダイアグラム全体（ノード一覧 + 接続一覧）。"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    format_version: str = FORMAT_VERSION
    nodes: List[Node] = Field(
        default_factory=list,
        validation_alias=AliasChoices("nodes", "modules", "Modules"),
        serialization_alias="nodes",
    )
    connections: List[ConnectionRecord] = Field(
        default_factory=list,
        validation_alias=AliasChoices("connections", "Connections"),
        serialization_alias="connections",
    )

    @field_validator("nodes", "connections", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value
