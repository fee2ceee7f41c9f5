"""
main.py: Server launcher and entry point.

Run this file to start the TA allocation server:

    python main.py

This file does NOT contain application logic. See app.py for the FastAPI
application, service wiring, and startup sequence.

Direct uvicorn usage:
    uvicorn app:app --reload
"""

from __future__ import annotations

import os

import uvicorn


HOST = os.getenv("SERVER_HOST", "127.0.0.1")
PORT = int(os.getenv("SERVER_PORT", "8000"))


def main() -> None:
    """Start the TA allocation API server."""
    print("=" * 60)
    print("  TA Allocation Portal")
    print("=" * 60)
    print(f"  Server   : http://{HOST}:{PORT}")
    print(f"  Live feed: ws://{HOST}:{PORT}/ws/live")
    print(f"  API docs : http://{HOST}:{PORT}/docs")
    print("=" * 60)
    print("  Press CTRL+C to stop\n")

    # Start uvicorn; this blocks until CTRL+C
    uvicorn.run(
        "app:app",
        host=HOST,
        port=PORT,
        reload=True,
        log_level="info",
    )


if __name__ == "__main__":
    main()
