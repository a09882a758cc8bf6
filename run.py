import os

import uvicorn

from sima.settings import LOG_LEVEL, _env_bool


def _port(default: int = 8000) -> int:
    try:
        return int(os.getenv("UVICORN_PORT", os.getenv("PORT", str(default))))
    except ValueError:
        return default


if __name__ == "__main__":
    # UVICORN_HOST/PORT menang atas HOST/PORT
    host = os.getenv("UVICORN_HOST", os.getenv("HOST", "0.0.0.0"))

    uvicorn.run(
        "sima.main:app",
        host=host,
        port=_port(),
        reload=_env_bool("RELOAD", False),
        log_level=LOG_LEVEL.lower(),
    )
