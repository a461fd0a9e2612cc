#!/usr/bin/env python3
# backend/run.py
"""
Development server runner for the messaging core.

Runs the single worker the realtime socket needs, with the in-process
fan-out backend unless BROADCAST_URL points at Redis.
"""
import os
from pathlib import Path
import sys

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

os.environ.setdefault("BROADCAST_URL", "memory://")

import uvicorn

from qachat.core.config import settings
from qachat.init_db import init_db

if __name__ == "__main__":
    init_db()
    print("Starting qachat on http://localhost:8000 (socket: /api/v1/realtime/ws)")
    uvicorn.run(
        "qachat.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        workers=settings.web_concurrency,
        reload=os.getenv("RELOAD", "true").lower() == "true",
        log_level="info",
    )
