"""
asgi.py -- The deployable app: JSON API plus the kiosk pages.

api/main.py builds the FastAPI app and its /api routers; web/routes.py holds
the server-rendered Kindle and magic-link pages. Neither package imports the
other, so they are joined here.

Run with:  uvicorn asgi:app --host 0.0.0.0 --port 8000
"""

from api.main import app
from web.routes import router as web_router

app.include_router(web_router, tags=["Kiosk"])
