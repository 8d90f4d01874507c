"""
telewind entry point.

    python main.py run-telegram-bot --speed 6
"""
import sys

from telewind.cli import main

if __name__ == "__main__":
    sys.exit(main())
