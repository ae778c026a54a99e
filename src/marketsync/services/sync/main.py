"""Main entry point for running the sync service."""

import uvicorn

from marketsync.services.sync import build_app


def main() -> None:
    """Run the sync service; the scheduler starts with the app."""
    app = build_app()
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")


if __name__ == "__main__":
    main()
