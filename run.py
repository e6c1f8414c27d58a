#!/usr/bin/env python3
"""
Development server runner for the Oil Mart Retail API.
Binds to all interfaces so the API is reachable from a container or LAN.
"""
import os
import uvicorn

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))
    reload = os.getenv("RELOAD", "true").lower() in ("1", "true", "yes")

    uvicorn.run(
        "oilmart.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
