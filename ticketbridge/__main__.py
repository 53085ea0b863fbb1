"""Allow ``python -m ticketbridge``."""

from ticketbridge.cli import app

if __name__ == "__main__":
    app()
