import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from fbd_editor.anchors import curve_control_points
from fbd_editor.block_def import BlockType, get_all_blocks
from fbd_editor.errors import InvalidConnection, NotFound, StorageError
from fbd_editor.events import ChangeEvent
from fbd_editor.interaction import PointerTarget
from fbd_editor.models import AnchorKind, AnchorRef, ComparisonOperator, Connection, Point
from fbd_editor.session import EditorSession
from fbd_editor.settings import init_settings

logger = structlog.get_logger(__name__)

# main.py は src/gui/server/main.py にある
project_root = Path(__file__).resolve().parent.parent.parent.parent


# --- リクエストモデル ---

class DropRequest(BaseModel):
    type: BlockType
    x: float
    y: float


class AttributesRequest(BaseModel):
    name: Optional[str] = None
    type: Optional[BlockType] = None
    selected_message: Optional[str] = None
    set_value: Optional[float] = None
    comparison_operator: Optional[ComparisonOperator] = None
    opc_node_id: Optional[str] = None


class ConnectRequest(BaseModel):
    source_node_id: str
    target_node_id: str
    source_anchor: AnchorKind = AnchorKind.OUTPUT
    target_anchor: AnchorKind = AnchorKind.INPUT


class PointerRequest(BaseModel):
    x: float
    y: float
    target: PointerTarget = PointerTarget()


class SelectRequest(BaseModel):
    node_id: Optional[str] = None
    connection_id: Optional[str] = None


class FileRequest(BaseModel):
    path: str


def get_session(request: Request) -> EditorSession:
    return request.app.state.session


def connection_view(conn: Connection) -> Dict[str, Any]:
    """接続と、描画用のベジェ制御点"""
    c1, c2 = curve_control_points(conn.start_point, conn.end_point)
    return {
        **conn.model_dump(mode="json"),
        "control_points": [c1.model_dump(mode="json"), c2.model_dump(mode="json")],
    }


def diagram_snapshot(session: EditorSession) -> Dict[str, Any]:
    """現在のダイアグラムと編集状態をまとめて返す"""
    diagram = session.diagram
    selected_node = diagram.selected_node
    selected_connection = diagram.selected_connection
    transient = session.router.transient_connection
    return {
        "document": diagram.to_document().model_dump(mode="json", by_alias=True),
        "connections": [connection_view(c) for c in diagram.connections],
        "selected_node_id": selected_node.id if selected_node else None,
        "selected_connection_id": selected_connection.id if selected_connection else None,
        "interaction_state": session.router.state.value,
        "transient_connection": transient.model_dump(mode="json") if transient else None,
        "status": session.status.message,
        "mouse_position": session.context.mouse_position,
    }


def create_app(config_file: Optional[Path] = None) -> FastAPI:
    """
    Build the backend application around one editor session.

    The config file defaults to FBD_EDITOR_CONFIG, then project_root/config.json.
    """
    if config_file is None:
        config_env = os.environ.get("FBD_EDITOR_CONFIG")
        config_file = Path(config_env) if config_env else project_root / "config.json"
    settings_manager = init_settings(config_file)

    app = FastAPI(title="FBD Editor Backend")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings_manager
    app.state.session = EditorSession(settings=settings_manager)
    logger.info("backend_ready", config=str(config_file), blocks=len(get_all_blocks()))

    register_routes(app)
    return app


def register_routes(app: FastAPI):
    # --- 設定 ---

    @app.get("/api/settings/theme")
    async def get_theme(request: Request):
        """現在のテーマ設定を返す"""
        return {"theme": request.app.state.settings.get("ui.theme", "dark")}

    @app.get("/api/settings/editor")
    async def get_editor_settings(request: Request):
        """キャンバスとノードの設定を返す"""
        settings = request.app.state.settings
        return {
            "surface": settings.get("surface", {}),
            "node": settings.get("node", {}),
            "connection": settings.get("connection", {}),
        }

    # --- パレット ---

    @app.get("/api/blocks")
    async def get_blocks(request: Request):
        """パレットに表示するブロックの一覧を返す（order順）"""
        session = get_session(request)
        blocks = []
        for block in get_all_blocks():
            template = session.templates[block.type]
            blocks.append({
                "type": block.type.value,
                "display_name": block.display_name,
                "stream": block.stream,
                "order": block.order,
                "messages": [m.model_dump() for m in block.messages],
                "width": template.width,
                "height": template.height,
            })
        return blocks

    # --- ダイアグラム ---

    @app.get("/api/diagram")
    async def get_diagram(request: Request):
        return diagram_snapshot(get_session(request))

    @app.post("/api/diagram/new")
    async def new_diagram(request: Request):
        session = get_session(request)
        session.new_canvas()
        return diagram_snapshot(session)

    @app.post("/api/nodes")
    async def drop_node(body: DropRequest, request: Request):
        """パレットのテンプレートを指定位置に配置する"""
        node = get_session(request).drop_template(body.type, body.x, body.y)
        return node.model_dump(mode="json", by_alias=True)

    @app.patch("/api/nodes/{node_id}")
    async def update_node(node_id: str, body: AttributesRequest, request: Request):
        session = get_session(request)
        attributes = body.model_dump(exclude_none=True)
        try:
            node = session.diagram.get_node(node_id)
            session.diagram.update_attributes(node_id, **attributes)
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return node.model_dump(mode="json", by_alias=True)

    @app.delete("/api/nodes/{node_id}")
    async def delete_node(node_id: str, request: Request):
        if not get_session(request).diagram.remove_node(node_id):
            raise HTTPException(status_code=404, detail=f"Node '{node_id}' not found")
        return {"status": "deleted"}

    @app.post("/api/connections")
    async def connect(body: ConnectRequest, request: Request):
        session = get_session(request)
        try:
            conn = session.diagram.add_connection(
                AnchorRef(body.source_node_id, body.source_anchor),
                AnchorRef(body.target_node_id, body.target_anchor),
            )
        except InvalidConnection as e:
            raise HTTPException(status_code=422, detail=f"Invalid connection: {e}")
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        return conn.model_dump(mode="json")

    @app.delete("/api/connections/{connection_id}")
    async def delete_connection(connection_id: str, request: Request):
        if not get_session(request).diagram.remove_connection_by_id(connection_id):
            raise HTTPException(status_code=404, detail=f"Connection '{connection_id}' not found")
        return {"status": "deleted"}

    @app.post("/api/select")
    async def select(body: SelectRequest, request: Request):
        session = get_session(request)
        diagram = session.diagram
        if body.node_id is not None:
            found = diagram.select_node(body.node_id)
        elif body.connection_id is not None:
            found = diagram.select_connection(body.connection_id)
        else:
            diagram.clear_selection()
            found = True
        if not found:
            raise HTTPException(status_code=404, detail="Selection target not found")
        return diagram_snapshot(session)

    @app.post("/api/delete-selected")
    async def delete_selected(request: Request):
        session = get_session(request)
        return {"deleted": session.delete_selected(), "status": session.status.message}

    # --- ポインター操作 ---

    @app.post("/api/pointer/down")
    async def pointer_down(body: PointerRequest, request: Request):
        session = get_session(request)
        state = session.router.pointer_down(Point(x=body.x, y=body.y), body.target)
        return {"state": state.value}

    @app.post("/api/pointer/move")
    async def pointer_move(body: PointerRequest, request: Request):
        session = get_session(request)
        state = session.router.pointer_move(Point(x=body.x, y=body.y))
        transient = session.router.transient_connection
        return {
            "state": state.value,
            "mouse_position": session.context.mouse_position,
            "transient_connection": transient.model_dump(mode="json") if transient else None,
        }

    @app.post("/api/pointer/up")
    async def pointer_up(body: PointerRequest, request: Request):
        session = get_session(request)
        conn = session.router.pointer_up(Point(x=body.x, y=body.y))
        return {
            "state": session.router.state.value,
            "connection": conn.model_dump(mode="json") if conn else None,
            "connection_status": session.router.connection_controller.connection_status,
        }

    # --- ファイル ---

    @app.post("/api/file/save")
    async def save_file(body: FileRequest, request: Request):
        session = get_session(request)
        try:
            path = session.save(body.path)
        except StorageError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": "saved", "path": str(path)}

    @app.post("/api/file/load")
    async def load_file(body: FileRequest, request: Request):
        session = get_session(request)
        try:
            report = await session.load(body.path)
        except StorageError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return report.model_dump(mode="json")

    @app.get("/api/document/export")
    async def export_document(request: Request):
        return json.loads(get_session(request).export_document())

    @app.post("/api/document/import")
    async def import_document(document: Dict[str, Any], request: Request):
        session = get_session(request)
        try:
            report = await session.import_document(json.dumps(document))
        except StorageError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return report.model_dump(mode="json")

    # --- 変更通知 ---

    @app.websocket("/api/ws/changes")
    async def websocket_changes(websocket: WebSocket):
        """
        ダイアグラムの変更イベントをストリーミング。
        接続直後に現在のスナップショットを送信する。
        """
        await websocket.accept()
        session: EditorSession = websocket.app.state.session
        loop = asyncio.get_running_loop()
        queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

        def on_change(event: ChangeEvent):
            # 変更は別スレッドのリクエストから通知されることがある
            loop.call_soon_threadsafe(queue.put_nowait, {"type": "change", **event.model_dump(mode="json")})

        async def receive_messages():
            """切断を検知するためにクライアントからのメッセージを読み捨てる"""
            try:
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info("websocket_disconnected")

        async def send_changes():
            while True:
                message = await queue.get()
                await websocket.send_json(message)

        session.diagram.notifier.subscribe(on_change)
        await websocket.send_json({"type": "snapshot", "diagram": diagram_snapshot(session)})
        receive_task = asyncio.create_task(receive_messages())
        send_task = asyncio.create_task(send_changes())
        try:
            await asyncio.wait({receive_task, send_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            session.diagram.notifier.unsubscribe(on_change)
            receive_task.cancel()
            send_task.cancel()
