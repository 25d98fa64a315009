"""
WebSocket 엔드포인트 — 조직 재고 실시간 동기화
클라이언트가 /ws/inventory/{organization_id}에 연결하면:
  - snapshot: 연결 직후 전체 품목 1회
  - change: 이후 품목 변경마다 (item이 null이면 삭제)
  - ping → pong
연결마다 서버 측 RealtimeReconciler를 하나 두고, 버전 가드를 통과한 변경만 전달한다.
"""

import asyncio
import json
import logging
from collections import defaultdict
from datetime import datetime, timezone

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from stockflow.api.deps import get_change_feed, get_store
from stockflow.realtime.reconciler import RealtimeReconciler
from stockflow.schemas.inventory import InventoryItemSnapshot

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionManager:
    """WebSocket 연결 관리자 (조직별)"""

    def __init__(self):
        self.active_connections: dict[str, list[WebSocket]] = defaultdict(list)

    async def connect(self, organization_id: str, websocket: WebSocket):
        await websocket.accept()
        self.active_connections[organization_id].append(websocket)
        logger.info(f"WebSocket 연결: {organization_id} ({self.count()}개 활성)")

    def disconnect(self, organization_id: str, websocket: WebSocket):
        connections = self.active_connections.get(organization_id, [])
        if websocket in connections:
            connections.remove(websocket)
        logger.info(f"WebSocket 해제: {organization_id} ({self.count()}개 활성)")

    def count(self, organization_id: str | None = None) -> int:
        if organization_id is not None:
            return len(self.active_connections.get(organization_id, []))
        return sum(len(c) for c in self.active_connections.values())


# 싱글턴 매니저
ws_manager = ConnectionManager()


def _message(message_type: str, data) -> str:
    return json.dumps({
        "type": message_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }, ensure_ascii=False, default=str)


@router.websocket("/ws/inventory/{organization_id}")
async def inventory_websocket(websocket: WebSocket, organization_id: str):
    """조직 재고 실시간 WebSocket"""
    await ws_manager.connect(organization_id, websocket)

    outbox: asyncio.Queue[str] = asyncio.Queue()
    reconciler = RealtimeReconciler(
        organization_id,
        get_change_feed(),
        get_store().list_items,
        name=f"ws:{id(websocket):x}",
    )

    async def forward_change(previous: InventoryItemSnapshot | None, current: InventoryItemSnapshot | None):
        item_id = (current or previous).id
        outbox.put_nowait(_message("change", {
            "item_id": item_id,
            "version": reconciler.version_of(item_id),
            "item": current.model_dump(mode="json") if current else None,
        }))

    async def sender():
        while True:
            text = await outbox.get()
            await websocket.send_text(text)

    async def receiver():
        # 클라이언트 메시지 수신 루프 (핑/퐁 유지)
        while True:
            try:
                data = await websocket.receive_text()
            except WebSocketDisconnect:
                return
            if data == "ping":
                outbox.put_nowait(json.dumps({"type": "pong"}))

    tasks: list[asyncio.Task] = []
    try:
        await reconciler.connect()
        # connect()가 끝난 직후 리스너를 붙이므로 스냅샷과 첫 변경 사이에 빈틈이 없다
        outbox.put_nowait(_message("snapshot", [i.model_dump(mode="json") for i in reconciler.items()]))
        reconciler.add_listener(forward_change)
        tasks = [
            asyncio.create_task(sender(), name=f"ws-sender-{organization_id}"),
            asyncio.create_task(receiver(), name=f"ws-receiver-{organization_id}"),
        ]

        # 송신 실패 또는 클라이언트 종료 중 먼저 일어난 쪽에서 연결을 닫는다
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error is not None:
                logger.error(f"WebSocket 에러 ({task.get_name()}): {error}")

    except Exception as e:
        logger.error(f"WebSocket 에러: {e}")
    finally:
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await reconciler.disconnect()
        ws_manager.disconnect(organization_id, websocket)
