"""Entry point for running chronicle as a module: python -m chronicle"""

from chronicle.cli.commands import app

if __name__ == "__main__":
    app()
