#!/usr/bin/env python3
"""Main entry point for ctxvault.

Runs the ctxvault command line from a source checkout without installing the
package. Loads .env from the vault root if present.
"""

import sys
from pathlib import Path

# Add the project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

if __name__ == "__main__":
    from ctxvault.cli import main

    sys.exit(main())
