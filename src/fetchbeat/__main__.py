"""Allow ``python -m fetchbeat``."""

from fetchbeat.cli.app import app

if __name__ == "__main__":
    app()
