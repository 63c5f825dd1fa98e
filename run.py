"""
Entry point for the STEP mesh service.

Running this script with ``python run.py`` starts the FastAPI server
defined in ``backend/stepmesh/main.py``.  The ``backend`` directory is
added to the Python path first so the service runs from a plain
checkout as well as from an installed package.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import logging
import uvicorn

logging.basicConfig(
    level=os.environ.get("STEPMESH_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def main() -> None:
    """Run the Uvicorn server hosting the mesh API."""
    backend_dir = Path(__file__).resolve().parent / "backend"
    if str(backend_dir) not in sys.path:
        sys.path.append(str(backend_dir))

    # Imported inside main() once backend/ is on sys.path
    from stepmesh.main import app  # type: ignore

    host = os.environ.get("STEPMESH_HOST", "0.0.0.0")
    port = int(os.environ.get("STEPMESH_PORT", "8000"))
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
