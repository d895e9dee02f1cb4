"""
Tests for node/connection models and the block definition registry.
"""

import pytest
from pydantic import ValidationError

from fbd_editor.block_def import BlockType, available_messages, get_all_blocks, get_block_definition
from fbd_editor.models import (
    AnchorKind,
    ComparisonOperator,
    ConnectionRecord,
    DiagramDocument,
    Node,
    Point,
)


class TestBlockDefinitions:

    def test_all_block_types_registered_in_order(self):
        blocks = get_all_blocks()
        assert [b.type for b in blocks] == list(BlockType)
        assert [b.order for b in blocks] == sorted(b.order for b in blocks)

    def test_stream_and_messages(self):
        block = get_block_definition(BlockType.TOOL_STATUS)
        assert block.display_name == "Tool Status"
        assert block.stream == 1
        assert block.default_message == block.message_names[0]
        assert all(name.startswith("S1F") for name in block.message_names)

    def test_available_messages_follow_type(self):
        assert available_messages(BlockType.ERROR) == get_block_definition(BlockType.ERROR).message_names
        assert all(name.startswith("S9F") for name in available_messages(BlockType.ERROR))

    def test_block_type_from_index(self):
        assert Node.model_validate({"type": 0}).type is BlockType.TOOL_STATUS
        assert Node.model_validate({"type": 6}).type is BlockType.TERMINAL_SERVICES
        with pytest.raises(ValidationError):
            Node.model_validate({"type": 7})


class TestNode:

    def test_defaults(self):
        node = Node()
        assert node.name == "New Module"
        assert node.x == node.y == node.width == node.height == 0
        assert node.type is BlockType.TOOL_STATUS
        assert node.selected_message == available_messages(BlockType.TOOL_STATUS)[0]
        assert node.comparison_operator is ComparisonOperator.EQUAL
        assert node.id.startswith("node-")

    def test_invalid_message_replaced_by_first_available(self):
        node = Node(type=BlockType.DATA_COLLECTION, selected_message="S1F1")
        assert node.selected_message == available_messages(BlockType.DATA_COLLECTION)[0]

    def test_valid_message_kept(self):
        messages = available_messages(BlockType.TOOL_CONTROL)
        node = Node(type=BlockType.TOOL_CONTROL, selected_message=messages[-1])
        assert node.selected_message == messages[-1]

    def test_accepts_legacy_field_names_and_indexes(self):
        node = Node.model_validate({
            "id": "n1",
            "moduleType": 2,
            "name": None,
            "isSelected": True,
            "selectedOperator": 0,
            "x": None,
        })
        assert node.id == "n1"
        assert node.type is BlockType.EXCEPTION_HANDLING
        assert node.name == "New Module"
        assert node.selected is True
        assert node.comparison_operator is ComparisonOperator.GREATER_THAN
        assert node.x == 0

    def test_camel_case_serialization(self):
        node = Node(id="n1", opc_node_id="ns=2;s=Tag", set_value=3.5)
        data = node.model_dump(mode="json", by_alias=True)
        assert data["opcNodeId"] == "ns=2;s=Tag"
        assert data["setValue"] == 3.5
        assert data["selectedMessage"] == node.selected_message
        assert data["comparisonOperator"] == "Equal"
        assert data["type"] == "ToolStatus"
        assert "available_messages" not in data

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            Node(type="Robot")

    def test_clone_gets_fresh_id(self):
        node = Node(name="Pump", x=10, y=20, width=250, height=200, selected=True)
        clone = node.clone()
        assert clone.id != node.id
        assert clone.selected is False
        assert (clone.name, clone.x, clone.y, clone.width, clone.height) == ("Pump", 10, 20, 250, 200)

    def test_id_is_immutable(self):
        node = Node()
        with pytest.raises(ValidationError):
            node.id = "other"

    def test_contains_with_margin(self):
        node = Node(x=100, y=100, width=200, height=100)
        assert node.contains(Point(x=150, y=150))
        assert not node.contains(Point(x=95, y=150))
        assert node.contains(Point(x=95, y=150), margin=5)


class TestDocument:

    def test_anchor_kind_accepts_connector_names(self):
        assert AnchorKind("InputConnection") is AnchorKind.INPUT
        assert AnchorKind("OutputConnection") is AnchorKind.OUTPUT
        assert AnchorKind.INPUT.opposite is AnchorKind.OUTPUT

    def test_connection_record_defaults_direction(self):
        record = ConnectionRecord.model_validate({"sourceModuleId": "a", "targetModuleId": "b"})
        assert record.source == ("a", AnchorKind.OUTPUT)
        assert record.target == ("b", AnchorKind.INPUT)

    def test_connection_record_keeps_stored_direction(self):
        record = ConnectionRecord.model_validate({
            "sourceNodeId": "a", "targetNodeId": "b",
            "sourceAnchorKind": "input", "targetAnchorKind": "OutputConnection",
        })
        assert record.source.kind is AnchorKind.INPUT
        assert record.target.kind is AnchorKind.OUTPUT

    @pytest.mark.parametrize("stored, expected", [
        ({"sourceAnchorKind": "input"}, (AnchorKind.INPUT, AnchorKind.OUTPUT)),
        ({"targetAnchorKind": "output"}, (AnchorKind.INPUT, AnchorKind.OUTPUT)),
        ({"sourceAnchorKind": "output"}, (AnchorKind.OUTPUT, AnchorKind.INPUT)),
        ({"targetAnchorKind": "input"}, (AnchorKind.OUTPUT, AnchorKind.INPUT)),
    ])
    def test_connection_record_infers_missing_kind(self, stored, expected):
        record = ConnectionRecord.model_validate({"sourceNodeId": "a", "targetNodeId": "b", **stored})
        assert (record.source.kind, record.target.kind) == expected

    def test_document_accepts_legacy_keys(self):
        document = DiagramDocument.model_validate({
            "Modules": [{"id": "a"}],
            "Connections": None,
            "somethingElse": 1,
        })
        assert [n.id for n in document.nodes] == ["a"]
        assert document.connections == []
