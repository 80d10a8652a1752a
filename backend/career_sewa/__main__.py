"""Run the API with uvicorn: `python -m career_sewa`."""

import uvicorn

from career_sewa.config import settings


def main() -> None:
    uvicorn.run(
        "career_sewa.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        # Graceful shutdown of the database runs in the lifespan
        timeout_graceful_shutdown=10,
    )


if __name__ == "__main__":
    main()
