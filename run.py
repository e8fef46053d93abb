"""Run the botrunner service."""

import uvicorn

from botrunner.config import config

if __name__ == "__main__":
    uvicorn.run(
        "botrunner.main:app",
        host=config.host,
        port=config.port,
        reload=False,
    )
