"""
RUN SCRIPT - Start the IronChat gateway
=======================================

PURPOSE:
  Single entry point to start the backend. Delegates to ironchat.main.run(), which
  serves ironchat.main:app with uvicorn on 0.0.0.0:8000 and reloads on code changes.

USAGE:
  python run.py

  API docs: http://localhost:8000/docs

NOTE:
  Before running, set SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY and OPENAI_API_KEY in .env.
  The server refuses to start without the Supabase settings.
"""

from ironchat.main import run


if __name__ == "__main__":
    run()
