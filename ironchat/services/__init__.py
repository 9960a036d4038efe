"""
SERVICES PACKAGE
================

Business logic lives here. The API layer (ironchat.main) calls ChatService; the
services don't build HTTP responses, only run the chat flow.

MODULES:
    context_store     - ContextStore interface + Supabase implementation
    access_gate       - bearer auth, then daily quota
    completion_client - upstream chat-completions over httpx
    stream_proxy      - upstream SSE -> gateway SSE, StreamSession state
    usage_service     - message counter increment after a streamed answer
    memory_service    - detached extraction of user facts from an exchange
    chat_service      - one request end to end
"""
