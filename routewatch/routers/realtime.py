"""Real-time channel: WebSocket sessions subscribed to service rooms.

Client frames:
    {"event": "join", "service": "A"}
    {"event": "leave", "service": "A"}

Server frames:
    {"event": "joined" | "left", "service": "A"}
    {"event": "new_metric", "data": {...}}
    {"event": "error", "message": "..."}

Every outgoing frame goes through the session's queue and is written by a
single pump task, so acknowledgements and live events never interleave.
"""

import asyncio
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from routewatch.services.fanout_hub import FanoutHub, Subscriber

logger = logging.getLogger(__name__)

router = APIRouter(tags=['Realtime'])


def _error(message: str) -> Dict[str, Any]:
  return {'event': 'error', 'message': message}


def handle_frame(hub: FanoutHub, subscriber: Subscriber, raw: str) -> Dict[str, Any]:
  """Apply one client frame and build the reply.

  Args:
      hub: Fan-out hub owning the rooms
      subscriber: Session that sent the frame
      raw: Frame text as received

  Returns:
      The acknowledgement or error frame to send back
  """
  try:
    frame = json.loads(raw)
  except json.JSONDecodeError:
    return _error('Frame is not valid JSON')
  if not isinstance(frame, dict):
    return _error('Frame must be a JSON object')

  event = frame.get('event')
  service = frame.get('service')
  if isinstance(service, str):
    service = service.strip()

  if event == 'join':
    if not isinstance(service, str) or not service:
      return _error('join requires a service name')
    hub.join(subscriber, service)
    return {'event': 'joined', 'service': service}

  if event == 'leave':
    hub.leave(subscriber, service if isinstance(service, str) and service else None)
    return {'event': 'left', 'service': service}

  return _error(f'Unknown event: {event}')


async def _pump(websocket: WebSocket, subscriber: Subscriber) -> None:
  while True:
    event = await subscriber.queue.get()
    await websocket.send_json(event)


@router.websocket('/ws')
async def realtime_channel(websocket: WebSocket):
  """Stream newly ingested records to a dashboard session."""
  hub: FanoutHub = websocket.app.state.hub
  await websocket.accept()
  subscriber = hub.connect()
  logger.info(f'Dashboard session {subscriber.id} connected')

  pump = asyncio.create_task(_pump(websocket, subscriber))
  try:
    while True:
      message = await websocket.receive()
      if message['type'] == 'websocket.disconnect':
        raise WebSocketDisconnect(message.get('code', 1000))
      raw = message.get('text')
      if raw is None:
        hub.notify(subscriber, _error('Frame must be text'))
        continue
      hub.notify(subscriber, handle_frame(hub, subscriber, raw))
  except WebSocketDisconnect:
    pass
  finally:
    hub.disconnect(subscriber)
    pump.cancel()
    await asyncio.gather(pump, return_exceptions=True)
    if subscriber.dropped:
      logger.warning(f'Session {subscriber.id} lost {subscriber.dropped} events')
    logger.info(f'Dashboard session {subscriber.id} disconnected')
