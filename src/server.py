"""Run the task API with uvicorn.

Usage:
    python src/server.py

Env vars:
    TASKS_TOKEN_KEY   - Fernet key used to sign bearer tokens (required)
    POSTGRES_*        - database connection (or DATABASE_URL)
    HOST / PORT       - bind address (default 0.0.0.0:3000)
    CLIENT_ORIGIN     - allowed CORS origin (default http://localhost:5173)
    LOG_LEVEL         - default INFO
"""

import logging
import os
import sys
from pathlib import Path

# Ensure src/ is on sys.path when run directly
_src = Path(__file__).resolve().parent
if str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

import uvicorn

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
    stream=sys.stderr,
)
logger = logging.getLogger("server")


def main() -> None:
    from api import app

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "3000"))
    logger.info("Starting task API on %s:%s", host, port)
    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
