"""Entry point for running lorekeeper as a module.

Usage:
    python -m lorekeeper [command] [options]

Example:
    python -m lorekeeper analyze path/to/repo --provider anthropic
    python -m lorekeeper status path/to/repo
"""

from lorekeeper.cli import app

if __name__ == "__main__":
    app()
