from fastapi import APIRouter, Depends, WebSocket

from classtrack.core.config import REALTIME_PATH
from classtrack.core.deps import get_channel
from classtrack.realtime.channel import RealtimeChannel

router = APIRouter()


@router.websocket(REALTIME_PATH)
async def realtime_socket(websocket: WebSocket, channel: RealtimeChannel = Depends(get_channel)):
    # identity arrives later in a "join" frame; authorization happens on the
    # HTTP actions before anything is published here
    await channel.serve(websocket)
