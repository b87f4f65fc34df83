"""forkpipe entry point.

Supports: python -m forkpipe
"""

from .app import main

if __name__ == "__main__":
    main()
