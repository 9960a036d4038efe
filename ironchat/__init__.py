"""
IRONCHAT APPLICATION PACKAGE
============================

The streaming chat gateway behind the Bible study app.

  from ironchat.main import app
  from ironchat.prompts import synthesize
  from ironchat.services.chat_service import ChatService

FILE STRUCTURE:
  ironchat/
    __init__.py   - This file; marks 'ironchat' as a package.
    main.py       - FastAPI app, lifespan, and HTTP endpoints (/chat, /health).
    models.py     - Pydantic models for the request body and memory records.
    errors.py     - Error taxonomy with HTTP status codes and JSON bodies.
    prompts.py    - System prompt assembly and the memory-extraction prompt.
    services/     - Context store, access gate, upstream client, stream proxy,
                    usage counter, memory extraction, chat orchestration.
    utils/        - Detached task tracker.
"""
