from __future__ import annotations

import os
import logging
from typing import Any, Dict, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .routes import router as carrier_rules_router
from ..db import init_db, new_session
from ..settings import settings

# ---------------- Logging ----------------
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("freight-rules-api")

API_VERSION = "1.0.0"

# ---------- App ----------
app = FastAPI(
    title="Carrier Rules Engine",
    version=API_VERSION,
    description="Acceptance checks, lane-meter measures and surcharge events for RoRo cargo",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.include_router(carrier_rules_router)

# ----- CORS -----
_allow = os.getenv("ALLOW_ORIGINS") or os.getenv("ALLOWED_ORIGINS", "*")
allow_origins: List[str] = [o.strip() for o in _allow.split(",") if o.strip()] if _allow else ["*"]
allow_all = (len(allow_origins) == 1 and allow_origins[0] == "*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    # Browsers disallow credentials with "*"; use regex echo when fully open.
    allow_credentials=not allow_all,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_origin_regex=".*" if allow_all else None,
)


@app.on_event("startup")
def _startup():
    """Ensure rule tables exist unless rules are served from a JSON rule set."""
    if settings.rules_path:
        logger.info("Serving carrier rules from %s", settings.rules_path)
        return
    try:
        init_db()
        logger.info("Startup complete, DB initialized.")
    except Exception:
        logger.exception("DB init failed during startup; continuing without blocking app.")


@app.get("/health", tags=["System"])
def health() -> Dict[str, Any]:
    if settings.rules_path:
        return {"ok": True, "version": API_VERSION, "rules_source": "file", "db_ok": None}

    db_ok = True
    try:
        with new_session() as db:
            db.execute(text("SELECT 1")).scalar()
    except Exception:
        db_ok = False
    return {"ok": True, "version": API_VERSION, "rules_source": "database", "db_ok": db_ok}


# ----- Dev entrypoint -----
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port, reload=True)
