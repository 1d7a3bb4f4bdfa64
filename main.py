#!/usr/bin/env python3
"""
Development launcher for segmon.

- Runs the segment monitor CLI in the foreground
- Ctrl-C exits cleanly

Examples:
  ./main.py watch /tmp/rec/recording_20240101_000000_part000.mp4 --interval-ms 500
  ./main.py list /tmp/rec
"""

import sys

from segmon.cli import main

if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(0)
