"""
Module entry point for: python -m shiftbook

Allows running the indexer directly as a module:
    python -m shiftbook index <pdf_path> [options]
    python -m shiftbook lookup <identifier> [--date dd-mm-yyyy]
    python -m shiftbook serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
