"""Entry point for ``python -m codeagent``."""

from codeagent.cli.commands import app

if __name__ == "__main__":
    app()
