"""Run the server with ``python -m hero_engine.server``."""

import uvicorn

from hero_engine.server.core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "hero_engine.server.main:app",
        host=settings.server_host,
        port=settings.server_port,
        log_config=None,
    )
