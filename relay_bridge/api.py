"""
Client-facing endpoints.

Provides the /ws socket carrying the chat event protocol and the /api/test
diagnostic dispatch. Replies never travel back on the request path: they
arrive later through the webhook receiver or the fallback poller and are
fanned out to every connection on the thread.

Socket frames are JSON objects of the form {"event": <name>, "data": {...}}.

Client -> server:
    message     {message, agentId?, messageId?}
    ping        {}

Server -> client:
    connection_status   {status, message, threadId}
    processing          {messageId, status, message?}
    message_sent        {messageId, conversationId, threadId, status, message}
    reply               {messageId, response, conversationId, status, timestamp}
    error               {messageId?, message}
    pong                {timestamp}
"""

import logging
import secrets
import time
from typing import Any, Dict

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .bridge import Bridge
from .connection import Connection
from .errors import TransportError
from .models import ClientFrame, ClientMessage, DiagnosticDispatchRequest, utc_now

logger = logging.getLogger(__name__)

router = APIRouter()


def new_message_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket):
    """Main loop for a single client connection."""
    bridge: Bridge = websocket.app.state.bridge

    await websocket.accept()
    connection = Connection(websocket)
    thread_id = await bridge.connect(connection)
    logger.info(f"Client connected: {connection.connection_id}, thread {thread_id}")

    try:
        await connection.emit("connection_status", {
            "status": "connected",
            "message": "Connected to agent relay server",
            "threadId": thread_id,
        })

        while True:
            raw = await websocket.receive_text()
            try:
                frame = ClientFrame.model_validate_json(raw)
            except ValidationError as e:
                logger.warning(f"Invalid frame from {connection.connection_id}: {e}")
                await connection.emit("error", {"message": "Invalid message format"})
                continue

            if frame.event == "message":
                await _handle_message(bridge, connection, frame.data)
            elif frame.event == "ping":
                await connection.emit("pong", {"timestamp": utc_now()})
            else:
                await connection.emit("error", {"message": f"Unknown event: {frame.event}"})

    except WebSocketDisconnect as e:
        logger.info(f"Client disconnected: {connection.connection_id}, thread {thread_id}, code {e.code}")
    except Exception as e:
        logger.error(f"Connection error {connection.connection_id}: {e}")
    finally:
        await bridge.disconnect(connection)


async def _handle_message(bridge: Bridge, connection: Connection, data: Dict[str, Any]):
    """Dispatch one client message and acknowledge it."""
    try:
        request = ClientMessage.model_validate(data)
    except ValidationError:
        await connection.emit("error", {"message": "Invalid message payload"})
        return

    message_id = request.message_id or new_message_id()

    if not request.message:
        await connection.emit("error", {"messageId": message_id, "message": "No message content provided"})
        return

    agent_id = request.agent_id or bridge.config.agent_id
    if not agent_id:
        await connection.emit("error", {"messageId": message_id, "message": "Agent ID is required"})
        return

    logger.info(f"Received message from {connection.connection_id} on thread {connection.thread_id}")
    await connection.emit("processing", {"messageId": message_id, "status": "processing"})

    try:
        job = await bridge.send(connection, request.message, agent_id, message_id)
    except (TransportError, ValueError) as e:
        logger.error(f"Error handling message {message_id}: {e}")
        await connection.emit("error", {
            "messageId": message_id,
            "message": f"Error processing your message: {e}",
        })
        return

    await connection.emit("message_sent", {
        "messageId": message_id,
        "conversationId": job.conversation_id,
        "threadId": connection.thread_id,
        "status": "processing",
        "message": "Message sent, waiting for response via webhook",
    })


@router.post("/api/test")
async def api_test_dispatch(request: Request, body: DiagnosticDispatchRequest):
    """
    Dispatch a message on a throwaway thread.

    Checks processor credentials and webhook configuration without a socket.
    The eventual reply is an orphaned delivery.
    """
    bridge: Bridge = request.app.state.bridge

    if not body.message:
        return JSONResponse(status_code=400, content={"success": False, "error": "Message is required"})

    agent_id = body.agent_id or bridge.config.agent_id
    if not agent_id:
        return JSONResponse(status_code=400, content={"success": False, "error": "Agent ID is required"})

    thread_id = f"thread_{int(time.time() * 1000)}_api_test"
    try:
        job = await bridge.dispatcher.dispatch(body.message, agent_id, thread_id)
    except TransportError as e:
        logger.error(f"API test dispatch failed: {e}")
        return JSONResponse(status_code=502, content={
            "success": False,
            "error": str(e),
            "timestamp": utc_now(),
        })

    return {
        "success": True,
        "conversationId": job.conversation_id,
        "jobId": job.job_id,
        "threadId": thread_id,
        "webhookInfo": {
            "url": bridge.config.webhook_url,
            "serverUrl": bridge.config.server_url,
            "thread_id": thread_id,
        },
        "timestamp": utc_now(),
    }
