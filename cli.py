#!/usr/bin/env python
"""
Headshot orchestrator CLI entry point.

Usage:
    python cli.py select --purpose corporate --quality premium --plan professional
    python cli.py cache-stats
    python cli.py clear-cache --kind generation
    python cli.py usage <user-id> --plan executive
    python cli.py performance flux-pro --days 30
"""

from src.cli.app import main

if __name__ == "__main__":
    main()
