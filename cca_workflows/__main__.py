"""Allow `python -m cca_workflows`."""

from .cli import cli

if __name__ == "__main__":
    cli()
