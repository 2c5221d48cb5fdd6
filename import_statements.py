#!/usr/bin/env python3
"""Bank and Card Statement Import Tool.

This is the main entry point script for the statement importer.
It wraps the package CLI for convenient execution.

Usage:
    python import_statements.py statement.ofx --existing-keys keys.yaml --save-keys

For full documentation and options:
    python import_statements.py --help
"""

import sys
from pathlib import Path

# Add src to path for development installs
src_path = Path(__file__).parent / "src"
if src_path.exists():
    sys.path.insert(0, str(src_path))

from statement_importer.cli import main

if __name__ == "__main__":
    sys.exit(main())
