"""Run the API with uvicorn: ``python main.py [port]``."""

import sys

import uvicorn

from waitlist_reassignment.config import settings


def main():
    port = int(sys.argv[1]) if len(sys.argv) > 1 else 3000
    uvicorn.run(
        "waitlist_reassignment.main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.debug,
        log_config=None,  # the app configures logging itself
    )


if __name__ == "__main__":
    main()
