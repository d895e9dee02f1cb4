import tomllib
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

DEFAULT_BLOCKS_FILE = Path(__file__).resolve().parent / "blocks.toml"


class BlockType(str, Enum):
    """ファンクションブロックの種類（SECSストリームに対応）。"""
    TOOL_STATUS = "ToolStatus"              # Stream 1
    TOOL_CONTROL = "ToolControl"            # Stream 2
    EXCEPTION_HANDLING = "ExceptionHandling"  # Stream 5
    DATA_COLLECTION = "DataCollection"      # Stream 6
    PROCESS_PROGRAM = "ProcessProgram"      # Stream 7
    ERROR = "Error"                         # Stream 9
    TERMINAL_SERVICES = "TerminalServices"  # Stream 10


class MessageDefinition(BaseModel):
    """ブロックが選択可能なSECSメッセージ。"""
    name: str
    description: str = ""


class BlockDefinition(BaseModel):
    """
    blocks.tomlからパースされたブロックのメタデータ。
    パレットのテンプレート生成とメッセージ候補の導出に使用します。
    """
    type: BlockType
    display_name: str = ""
    stream: Optional[int] = None
    order: int = 100  # パレット内での表示順序
    messages: List[MessageDefinition] = Field(default_factory=list)

    @property
    def message_names(self) -> List[str]:
        return [m.name for m in self.messages]

    @property
    def default_message(self) -> str:
        return self.messages[0].name if self.messages else ""


# --- Block Registry ---

_block_registry: Dict[BlockType, BlockDefinition] = {}


def register_block(block_def_instance: BlockDefinition):
    """ブロック定義をレジストリに登録します。"""
    if block_def_instance.type in _block_registry:
        logger.warning("block_definition_overwritten", block_type=block_def_instance.type.value)
    _block_registry[block_def_instance.type] = block_def_instance


def discover_blocks(blocks_file: Path = DEFAULT_BLOCKS_FILE) -> int:
    """TOMLファイルからブロック定義を読み込み、登録した件数を返します。"""
    with blocks_file.open("rb") as f:
        config = tomllib.load(f)

    count = 0
    for entry in config.get("blocks", []):
        try:
            block = BlockDefinition(**entry)
        except ValueError as e:
            logger.warning("block_definition_invalid", file=str(blocks_file), error=str(e))
            continue
        if not block.display_name:
            block.display_name = block.type.value
        register_block(block)
        count += 1

    logger.debug("blocks_discovered", file=str(blocks_file), count=count)
    return count


def _ensure_registry():
    if not _block_registry:
        discover_blocks()


def get_block_definition(block_type: BlockType) -> BlockDefinition:
    """ブロック種別に対応する定義を取得します。"""
    _ensure_registry()
    if block_type not in _block_registry:
        raise ValueError(f"Block definition '{block_type}' not found in registry.")
    return _block_registry[block_type]


def get_all_blocks() -> List[BlockDefinition]:
    """登録された全ブロックをorder順でソートして返します。"""
    _ensure_registry()
    return sorted(_block_registry.values(), key=lambda b: b.order)


def available_messages(block_type: BlockType) -> List[str]:
    """ブロック種別で選択可能なメッセージ名の一覧。未登録の種別は空リスト。"""
    try:
        return get_block_definition(block_type).message_names
    except ValueError:
        return []
