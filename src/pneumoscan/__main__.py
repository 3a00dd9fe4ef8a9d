"""Run the PneumoScan inference service via ``python -m pneumoscan``."""

from __future__ import annotations

import uvicorn

from pneumoscan.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "pneumoscan.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level="info",
    )
