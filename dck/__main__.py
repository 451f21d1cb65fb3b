"""
Entry point for running dck as a module.

Usage:
    python -m dck study notes/
    python -m dck stats notes/
    python -m dck --help
"""
from .cli.main import main

if __name__ == "__main__":
    main()
