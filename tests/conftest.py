"""
Pytest configuration and fixtures for the fbd-editor project.
"""

import sys
from pathlib import Path
from typing import List, Optional

# Add the src directory to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

import pytest

from fbd_editor.block_def import BlockType
from fbd_editor.core import Diagram
from fbd_editor.models import AnchorKind, Node, Point
from fbd_editor.render import AnchorHit, GeometryRenderLayer, RenderLayer
from fbd_editor.session import EditorSession
from fbd_editor.settings import SettingsManager
from fbd_editor.synchronizer import ConnectionSynchronizer


def make_node(x: float = 0, y: float = 0, width: float = 250, height: float = 200,
              block_type: BlockType = BlockType.TOOL_STATUS, **kwargs) -> Node:
    return Node(type=block_type, x=x, y=y, width=width, height=height, **kwargs)


class DeferredRenderLayer(RenderLayer):
    """
    Render layer whose node visuals materialize only after some layout passes.

    `ready_after` maps node ids to the number of layout passes they need;
    nodes missing from the map never become resolvable unless `default` is set.
    """
    def __init__(self, diagram: Diagram, ready_after: Optional[dict] = None, default: Optional[int] = 0):
        self.diagram = diagram
        self.geometry = GeometryRenderLayer(diagram)
        self.ready_after = ready_after or {}
        self.default = default
        self.passes = 0

    def _ready(self, node_id: str) -> bool:
        needed = self.ready_after.get(node_id, self.default)
        return needed is not None and self.passes >= needed

    def resolve_anchor_screen_position(self, node_id: str, kind: AnchorKind) -> Optional[Point]:
        if not self._ready(node_id):
            return None
        return self.geometry.resolve_anchor_screen_position(node_id, kind)

    def hit_test_anchors_near(self, point: Point, radius: float) -> List[AnchorHit]:
        return [hit for hit in self.geometry.hit_test_anchors_near(point, radius) if self._ready(hit.node_id)]

    async def request_layout_pass(self) -> None:
        self.passes += 1


@pytest.fixture
def diagram():
    return Diagram()


@pytest.fixture
def synced_diagram():
    """Diagram with a synchronizer attached."""
    diagram = Diagram()
    synchronizer = ConnectionSynchronizer(diagram)
    return diagram, synchronizer


@pytest.fixture
def settings(tmp_path):
    return SettingsManager("FBDEditorTest", "FBDEditorTest", config_file=tmp_path / "config.json")


@pytest.fixture
def session(settings):
    """Editor session with a fast retry delay for load tests."""
    settings.set("load.retry_delay_ms", 1)
    return EditorSession(settings=settings)


@pytest.fixture
def two_nodes(session):
    """Two non-overlapping nodes side by side: A at (100, 100), B at (500, 100)."""
    a = session.drop_template(BlockType.TOOL_STATUS, 100, 100)
    b = session.drop_template(BlockType.TOOL_CONTROL, 500, 100)
    return a, b
