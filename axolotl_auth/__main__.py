"""Run the auth proxy with uvicorn."""

import uvicorn

from axolotl_auth.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "axolotl_auth.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL,
    )


if __name__ == "__main__":
    main()
