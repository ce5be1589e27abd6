"""
main.py — Server launcher and entry point.

Run this file to start the booking API:

    python main.py

Interactive API docs are served at http://127.0.0.1:8000/docs

This file does NOT contain application logic. See app.py for the FastAPI
application, service wiring, and startup sequence.

Direct uvicorn usage:
    uvicorn app:app --reload
"""

from __future__ import annotations

import os

import uvicorn


HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))


def main() -> None:
    """Start the campus booking API server."""
    print("=" * 60)
    print("  Campus Resource Booking API")
    print("=" * 60)
    print(f"  Server   : http://{HOST}:{PORT}")
    print(f"  API docs : http://{HOST}:{PORT}/docs")
    print("=" * 60)
    print("  Press CTRL+C to stop\n")

    # workers=1: the conflict index lives in this process's memory
    uvicorn.run(
        "app:app",
        host=HOST,
        port=PORT,
        reload=os.getenv("RELOAD", "0") == "1",
        workers=1,
        log_level="info",
    )


if __name__ == "__main__":
    main()
