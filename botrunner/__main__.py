"""
Entry point for running botrunner via `python -m botrunner`.

Starts the FastAPI server with uvicorn.
"""

import uvicorn

from .config import config


def main():
    """Run the botrunner server."""
    uvicorn.run(
        "botrunner.main:app",
        host=config.host,
        port=config.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
