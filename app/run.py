"""Programmatic uvicorn entry point for RiskGate.

Reads host and port from the loaded config (127.0.0.1:8080 by default) and
starts uvicorn with hardened connection limits:

  --limit-concurrency 100  Max 100 concurrent connections; HTTP 503 when exceeded
  --backlog 50             OS connection queue depth
  --timeout-keep-alive 5   Short keep-alive window for idle connections

Usage:
    python -m app.run          # reads .riskgate/config.yaml
    riskgate                   # via pyproject.toml [project.scripts]
"""

from __future__ import annotations

import uvicorn

from app.config import load_config

# Must match httpx connection pool size (POOL_MAX_CONNECTIONS in engine.py).
UVICORN_LIMIT_CONCURRENCY: int = 100

UVICORN_BACKLOG: int = 50

UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the RiskGate server.

    Raises:
        SystemExit: Propagated from load_config() on config errors or a
            missing verification key.
    """
    config = load_config()

    uvicorn.run(
        "app.main:app",
        host=config.proxy.host,
        port=config.proxy.port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
