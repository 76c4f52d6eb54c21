#!/usr/bin/env python3
"""Command-line runner for source checkouts"""
import sys
from gpgbackup.cli import main

if __name__ == '__main__':
    sys.exit(main())
