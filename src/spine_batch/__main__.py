"""Allow ``python -m spine_batch``; worker processes are launched this way."""

from spine_batch.cli.app import app

if __name__ == "__main__":
    app()
