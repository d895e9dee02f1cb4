from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import structlog

from .block_def import BlockType, get_all_blocks
from .core import Diagram
from .events import ChangeEvent, ChangeKind
from .interaction import InteractionRouter, SurfaceContext
from .models import Node
from .persistence import DocumentGateway, FileStorage, LoadReport, save_document
from .render import GeometryRenderLayer, RenderLayer
from .settings import SettingsManager, get_setting
from .status import StatusSink
from .synchronizer import ConnectionSynchronizer

logger = structlog.get_logger(__name__)

RenderLayerFactory = Callable[[Diagram], RenderLayer]


class EditorSession:
    """
    One open editor surface: the diagram plus every collaborator wired to it.

    Front ends (the web backend, the headless tool, tests) drive the editor
    through this object only.
    """
    def __init__(
        self,
        settings: Optional[SettingsManager] = None,
        render_layer_factory: Optional[RenderLayerFactory] = None,
        storage: Optional[FileStorage] = None,
    ):
        self.settings = settings
        self.diagram = Diagram()
        self.status = StatusSink()
        self.synchronizer = ConnectionSynchronizer(self.diagram)
        factory = render_layer_factory or GeometryRenderLayer
        self.render_layer = factory(self.diagram)

        self.context = SurfaceContext(
            self.diagram,
            self.render_layer,
            self.status,
            width=float(self.setting("surface.width", 1600)),
            height=float(self.setting("surface.height", 1000)),
            hit_radius=float(self.setting("connection.hit_radius", 20)),
            min_width=float(self.setting("node.min_width", 100)),
            min_height=float(self.setting("node.min_height", 50)),
        )
        self.router = InteractionRouter(self.context)
        self.gateway = DocumentGateway(
            self.diagram,
            self.synchronizer,
            self.render_layer,
            self.status,
            storage=storage,
            max_retries=int(self.setting("load.max_retries", 5)),
            retry_delay=float(self.setting("load.retry_delay_ms", 200)) / 1000.0,
        )
        self.templates: Dict[BlockType, Node] = self._build_palette()
        self.diagram.notifier.subscribe(self._on_change)

    def setting(self, key: str, default=None):
        if self.settings is not None:
            return self.settings.get(key, default)
        return get_setting(key, default)

    def _build_palette(self) -> Dict[BlockType, Node]:
        """Create one template node per block type, in palette order."""
        width = float(self.setting("node.default_width", 250))
        height = float(self.setting("node.default_height", 200))
        templates: Dict[BlockType, Node] = {}
        for block in get_all_blocks():
            template = Node(type=block.type, name=block.display_name, width=width, height=height)
            templates[block.type] = template
            logger.debug("template_created", block_type=block.type.value, template_id=template.id)
        return templates

    def _on_change(self, event: ChangeEvent):
        if event.kind in (ChangeKind.NODE_ADDED, ChangeKind.NODE_REMOVED, ChangeKind.CLEARED):
            self.status.info(self.canvas_status)

    @property
    def canvas_status(self) -> str:
        return f"Modules on canvas: {self.diagram.node_count}"

    @property
    def palette(self) -> List[Node]:
        return list(self.templates.values())

    # --- 編集操作 ---

    def drop_template(self, block_type: Union[BlockType, str], x: float, y: float) -> Node:
        """Clone the palette template of a block type and place it at the drop point."""
        template = self.templates[BlockType(block_type)]
        node = template.clone()
        node.x, node.y = x, y
        self.diagram.add_node(node)
        logger.info("template_dropped", block_type=node.type.value, node_id=node.id, x=x, y=y)
        return node

    def delete_selected(self) -> bool:
        deleted = self.diagram.delete_selected()
        if deleted:
            self.status.info(self.canvas_status)
        return deleted

    def new_canvas(self):
        self.router.cancel()
        self.diagram.clear()
        self.status.info("Canvas cleared")

    # --- 保存・読み込み ---

    def save(self, path: Optional[Union[str, Path]] = None) -> Optional[Path]:
        return self.gateway.save(path)

    async def load(self, path: Optional[Union[str, Path]] = None) -> Optional[LoadReport]:
        self.router.cancel()
        return await self.gateway.load(path)

    def export_document(self) -> bytes:
        return save_document(self.diagram)

    async def import_document(self, data: Union[bytes, str]) -> LoadReport:
        self.router.cancel()
        return await self.gateway.load_bytes(data)

