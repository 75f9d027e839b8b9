#!/usr/bin/env python3
"""Development scripts for the waitlist reassignment service."""

import subprocess
import sys


def start():
    """Start the development server."""
    subprocess.run([
        "uvicorn",
        "waitlist_reassignment.main:app",
        "--host", "0.0.0.0",
        "--port", "3000",
        "--reload"
    ])


def worker():
    """Start a Celery worker for the sweep task."""
    subprocess.run([
        "celery", "-A", "waitlist_reassignment.tasks.celery_app:celery_app",
        "worker", "--loglevel=info"
    ])


def beat():
    """Start Celery beat to schedule the expiration sweep."""
    subprocess.run([
        "celery", "-A", "waitlist_reassignment.tasks.celery_app:celery_app",
        "beat", "--loglevel=info"
    ])


def test():
    """Run the test suite."""
    subprocess.run(["pytest", "tests/"])


def token():
    """Print a development access token for the user ID given after the command."""
    from waitlist_reassignment.utils.auth import create_access_token

    if len(sys.argv) < 3:
        print("Usage: python scripts.py token <user_id>")
        sys.exit(1)
    print(create_access_token({"sub": sys.argv[2]}))


def lint():
    """Run linting and type checking."""
    subprocess.run(["black", "waitlist_reassignment/"])
    subprocess.run(["mypy", "waitlist_reassignment/"])


def format_code():
    """Format code with black."""
    subprocess.run(["black", "waitlist_reassignment/", "tests/"])


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts.py <command>")
        print("Commands: start, worker, beat, test, token, lint, format-code")
        sys.exit(1)

    command = sys.argv[1].replace("-", "_")
    if hasattr(sys.modules[__name__], command):
        getattr(sys.modules[__name__], command)()
    else:
        print(f"Unknown command: {sys.argv[1]}")
        sys.exit(1)
