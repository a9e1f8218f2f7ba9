"""
Entry point for running skycommand as a module.

Usage: python -m skycommand
"""

from skycommand.cli import main

if __name__ == "__main__":
    main()
