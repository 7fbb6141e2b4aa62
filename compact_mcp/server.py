from fastapi import Body, FastAPI, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState
from fastapi.middleware.cors import CORSMiddleware
from . import config
from .router import route_request
from .utils.errors import error_response
import uvicorn
import logging
import uuid
from typing import Optional

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger("compact_mcp.server")

app = FastAPI(title="Compact MCP")

# Add CORS middleware to prevent 403/Origin issues
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def health_check():
    return {"status": "ok", "service": "Compact MCP", "version": "0.1.0"}


@app.post("/tools/{action}")
async def call_tool(action: str, payload: Optional[dict] = Body(default=None)):
    request_id = str(uuid.uuid4())[:8]
    return await route_request({"request_id": request_id, "action": action, "payload": payload or {}})


@app.websocket("/ws/tools")
async def tools_ws(ws: WebSocket):
    await ws.accept()
    logger.info("Client connected")

    try:
        while True:
            msg = await ws.receive_json()
            if not isinstance(msg, dict):
                await ws.send_json(error_response("unknown", "INVALID_REQUEST", "Expected a JSON object"))
                continue
            response = await route_request(msg)
            await ws.send_json(response)

    except WebSocketDisconnect:
        logger.info("Client disconnected")
    except Exception as e:
        logger.error(f"WebSocket fatal error: {e}")
        try:
            if ws.client_state == WebSocketState.CONNECTED:
                await ws.send_json({
                    "type": "error",
                    "error": {"code": "FATAL", "message": str(e)}
                })
        except RuntimeError as send_error:
            logger.debug(f"Could not report fatal error: {send_error}")


def main():
    uvicorn.run("compact_mcp.server:app", host="0.0.0.0", port=config.PORT)


if __name__ == "__main__":
    main()
