"""Codeloom API process.

    uvicorn main:app --app-dir apps/api
    python apps/api/main.py

Building the app reads Settings and configures logging, so a deployed
CODELOOM_ENV without GEMINI_API_KEY fails on import. On startup the lifespan
opens the session and user stores (SQL when DATABASE_URL is set, in memory
otherwise) and builds the shared httpx client and the Gemini dispatcher.

Request-id middleware is added after create_app so it is the outermost
layer: error envelopes and the request.completed log line both carry the id.
"""

import uvicorn

from codeloom.app import add_request_id_middleware, create_app

app = create_app()
add_request_id_middleware(app)

__all__ = ["app"]


if __name__ == "__main__":
    # RequestIDMiddleware already logs one line per request
    uvicorn.run(app, host="127.0.0.1", port=8000, access_log=False)
