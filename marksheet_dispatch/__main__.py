"""
Entry point for running the service CLI as a module: python -m marksheet_dispatch
"""

import sys
from marksheet_dispatch.cli import main

if __name__ == "__main__":
    sys.exit(main())
