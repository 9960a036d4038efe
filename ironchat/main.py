"""
IRONCHAT MAIN API
=================

This module defines the FastAPI application and its HTTP endpoints. The gateway
sits between the mobile app and the completion provider: it authenticates the
caller, enforces the free daily quota, builds a personalized system prompt, and
streams the answer back as server-sent events.

ENDPOINTS:
  GET  /        - Returns API name and list of endpoints.
  GET  /health  - Returns which services are wired and how many detached tasks are pending.
  POST /chat    - Streams an answer. Body: {question, conversationHistory?, preferences?,
                  userProfile?, intakeProfile?, conversationId?}; header
                  Authorization: Bearer <token>. Success is text/event-stream with
                  frames `data: {"content": "<delta>"}`; failures before the first
                  frame are JSON {error, code?, details?}.

STARTUP:
  The lifespan function validates configuration (the context store URL and key are
  required), connects to Supabase, opens one shared httpx client, and builds the
  services. On shutdown it waits for detached memory-extraction tasks before closing
  the HTTP client.
"""

from contextlib import asynccontextmanager
import logging

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from config import BACKGROUND_DRAIN_TIMEOUT, CORS_ALLOW_ORIGINS, OPENAI_API_KEY, missing_required_settings
from ironchat.errors import GatewayError
from ironchat.services.chat_service import ChatService
from ironchat.services.completion_client import CompletionClient, default_timeout
from ironchat.services.context_store import SupabaseContextStore
from ironchat.services.memory_service import MemoryService
from ironchat.utils.background import DetachedTaskTracker


# -----------------------------------------------------------------------------
# LOGGING
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("IronChat")


# -----------------------------------------------------------------------------
# GLOBAL SERVICE REFERENCES
# -----------------------------------------------------------------------------
# Set during startup (lifespan) and used by the route handlers.
http_client: httpx.AsyncClient = None
task_tracker: DetachedTaskTracker = None
chat_service: ChatService = None

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# -------------------------------------------------------------------------
# LIFESPAN (STARTUP / SHUTDOWN)
# -------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    - STARTUP: refuse to start without context store settings, then build
      1. SupabaseContextStore (auth, quota RPCs, memories)
      2. CompletionClient on a shared httpx.AsyncClient (upstream provider)
      3. MemoryService and DetachedTaskTracker
      4. ChatService, which the /chat endpoint uses
    - SHUTDOWN: drain detached tasks (bounded), then close the HTTP client.
    """
    global http_client, task_tracker, chat_service

    logger.info("=" * 60)
    logger.info("IronChat gateway - Starting Up...")
    logger.info("=" * 60)

    missing = missing_required_settings()
    if missing:
        logger.error("Missing required settings: %s", ", ".join(missing))
        raise RuntimeError(f"Missing required settings: {', '.join(missing)}")
    if not OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set. Every chat request will fail until it is configured.")

    try:
        logger.info("Connecting to context store...")
        store = await SupabaseContextStore.connect()

        http_client = httpx.AsyncClient(timeout=default_timeout())
        completions = CompletionClient(http_client)
        task_tracker = DetachedTaskTracker()
        memory_service = MemoryService(store, completions)
        chat_service = ChatService(store, completions, memory_service, task_tracker)
    except Exception as e:
        logger.error(f"Fatal error during startup: {e}", exc_info=True)
        raise

    logger.info("IronChat gateway is online and ready!")
    logger.info("=" * 60)

    yield

    logger.info("Shutting down IronChat gateway...")
    if task_tracker:
        await task_tracker.drain(BACKGROUND_DRAIN_TIMEOUT)
    if http_client:
        await http_client.aclose()
    logger.info("Shutdown complete.")


# -------------------------------------------------------------------------
# FASTAPI APP AND CORS
# -------------------------------------------------------------------------
app = FastAPI(
    title="IronChat Gateway",
    description="Streaming Bible study chat backend",
    lifespan=lifespan
)

# The mobile and web clients call from other origins, including preflight OPTIONS.
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =========================================================================
# API ENDPOINTS
# =========================================================================

@app.get("/")
async def root():
    """Return the API name and a short description of each endpoint."""
    return {
        "message": "IronChat Gateway",
        "endpoints": {
            "/chat": "Streamed chat answer (server-sent events)",
            "/health": "System health check"
        }
    }


@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "chat_service": chat_service is not None,
        "pending_background_tasks": task_tracker.pending if task_tracker else 0
    }


@app.post("/chat")
async def chat(request: Request):
    """
    Stream an answer to the caller's question.

    The gate (auth, then quota) runs before the body is even parsed, so rejected
    callers never cost an upstream call. Once the upstream stream is open the
    response is committed to 200 text/event-stream; a failure after that point
    ends the stream instead of returning a JSON error.
    """
    if not chat_service:
        raise HTTPException(status_code=503, detail="Chat service not initialized")

    try:
        frames = await chat_service.start_chat(request.headers.get("authorization"), request.json)
    except GatewayError as e:
        if e.status_code >= 500:
            logger.error(f"Chat request failed: {e.message} ({e.details or e.code or '-'})")
        else:
            logger.warning(f"Chat request rejected ({e.status_code}): {e.message}")
        return JSONResponse(status_code=e.status_code, content=e.to_payload())
    except Exception as e:
        logger.error(f"Error processing request: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to process request", "details": str(e)},
        )

    return StreamingResponse(frames, media_type="text/event-stream", headers=STREAM_HEADERS)


# -------------------------------------------------------------------------
# STANDALONE RUN (python -m ironchat.main)
# -------------------------------------------------------------------------
def run():
    """Start the uvicorn server (same as run.py)."""
    uvicorn.run(
        "ironchat.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )

if __name__ == "__main__":
    run()
