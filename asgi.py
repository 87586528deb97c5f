"""
asgi.py -- Application assembly for LicenseDesk.

This is the ONLY file that imports from both api/ and web/. It joins the two
independent layers into a single ASGI app without coupling them to each other.

The static front-end (STATIC_DIR) is mounted last so every API and login
route wins over a same-named file. It sits behind the access gate like any
other path.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

import logging
from pathlib import Path

from fastapi.staticfiles import StaticFiles

from api.main import app
from core.config import get_settings
from web.routes import router as web_router

logger = logging.getLogger("licensedesk.api")

app.include_router(web_router, tags=["Web UI"])

_static_dir = Path(get_settings().static_dir)
if _static_dir.is_dir():
    app.mount("/", StaticFiles(directory=str(_static_dir), html=True), name="static")
else:
    logger.warning("STATIC_DIR %s does not exist, front-end not served", _static_dir)
