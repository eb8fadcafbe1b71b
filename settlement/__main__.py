"""
Entry point.

Run: python -m settlement   (needs the ``server`` extra)
"""

import os

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "settlement.api:create_app",
        factory=True,
        host=os.environ.get("SETTLEMENT_HOST", "127.0.0.1"),
        port=int(os.environ.get("SETTLEMENT_PORT", "8000")),
    )
