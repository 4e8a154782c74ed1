# main.py

import sys

from rollguard.cli import main

if __name__ == "__main__":
    sys.exit(main())
