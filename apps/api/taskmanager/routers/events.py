from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status

from taskmanager.db import SessionLocal
from taskmanager.deps import principal_from_token
from taskmanager.realtime import manager

log = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


@router.websocket("/ws")
async def events_socket(websocket: WebSocket, token: str | None = None) -> None:
  """Push-only channel; anything the client sends is read and discarded."""
  if not token:
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
    return
  async with SessionLocal() as db:
    try:
      principal = await principal_from_token(token, db)
    except HTTPException:
      await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
      return

  await manager.connect(websocket)
  log.info("Event stream opened for user %s", principal.id)
  try:
    while True:
      await websocket.receive_text()
  except WebSocketDisconnect:
    pass
  finally:
    manager.disconnect(websocket)
