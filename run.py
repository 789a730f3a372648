#!/usr/bin/env python3
"""Backup runner, e.g. from cron: ./run.py >>dbdump.out 2>&1"""
import sys
from dbdump.cli import main

if __name__ == '__main__':
    sys.exit(main())
