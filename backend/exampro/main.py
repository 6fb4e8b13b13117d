"""Entry point for running the FastAPI backend server."""

import uvicorn

from .config import HOST, PORT, LOG_LEVEL


def main():
    """Run the FastAPI application."""
    uvicorn.run(
        "exampro.app:app",
        host=HOST,
        port=PORT,
        log_level=LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
