from __future__ import annotations

import logging
from typing import Any

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

log = logging.getLogger(__name__)

TASK_STATUS_CHANGED = "task_status_changed"


class ConnectionManager:
  """
  Fan-out to every open websocket.

  Delivery is best effort: a socket that fails to receive is dropped and the
  event is not retried or replayed.
  """

  def __init__(self) -> None:
    self._connections: list[WebSocket] = []

  @property
  def connection_count(self) -> int:
    return len(self._connections)

  async def connect(self, websocket: WebSocket) -> None:
    await websocket.accept()
    self._connections.append(websocket)
    log.info("Websocket connected (%d open)", len(self._connections))

  def disconnect(self, websocket: WebSocket) -> None:
    if websocket in self._connections:
      self._connections.remove(websocket)
      log.info("Websocket disconnected (%d open)", len(self._connections))

  async def broadcast(self, event: str, data: dict[str, Any]) -> int:
    message = {"event": event, "data": jsonable_encoder(data)}
    delivered = 0
    for ws in list(self._connections):
      try:
        await ws.send_json(message)
        delivered += 1
      except Exception:
        log.warning("Dropping websocket after failed send of %s", event)
        self.disconnect(ws)
    return delivered


manager = ConnectionManager()
