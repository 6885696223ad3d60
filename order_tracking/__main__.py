"""
Order Tracking — uvicorn runner

Transport pings drop unresponsive WebSocket clients; the endpoint's cleanup
then removes them from every room.
"""
import uvicorn

from order_tracking.core.config import get_settings

settings = get_settings()


if __name__ == "__main__":
    uvicorn.run(
        "order_tracking.main:app",
        host=settings.HOST,
        port=settings.PORT,
        ws_ping_interval=settings.WS_PING_INTERVAL,
        ws_ping_timeout=settings.WS_PING_TIMEOUT,
        log_level=settings.LOG_LEVEL.lower(),
    )
