"""
asgi.py -- Application assembly for keyshare.

This is the ONLY file that imports from both api/ and realtime/routes. It joins
the REST layer and the WebSocket channel into a single ASGI app without
coupling the two routers to each other.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from realtime.routes import router as realtime_router

# Mount the update channel here, not in api/main.py.
app.include_router(realtime_router, tags=["Updates"])
