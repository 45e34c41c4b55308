"""
Entry point for running My Records as a module.

Usage:
    python -m myrecords [command] [options]
"""

from myrecords.cli import main

if __name__ == "__main__":
    main()
