"""Run the API with uvicorn: ``python -m trackverse``."""

import uvicorn

from trackverse.app.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "trackverse.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.is_development and settings.DEBUG,
    )


if __name__ == "__main__":
    main()
