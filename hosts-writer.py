#!/usr/bin/env python3

"""Run the hosts-writer CLI straight from a source checkout.

Puts ``src/`` at the front of the import path so ``hosts_writer`` resolves
without ``pip install``; installed copies use the ``hosts-writer`` script.
"""

import sys
from pathlib import Path


sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from hosts_writer.cli import main  # noqa: E402


if __name__ == "__main__":
    main()
