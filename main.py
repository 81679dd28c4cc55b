#!/usr/bin/env python3
"""
Run the Memorable command line from a source checkout, e.g.

    python main.py import ~/Pictures/2024/*.jpg
    python main.py nearby 48.8584 2.2945 --radius 200
"""

from memorable.cli import main

if __name__ == "__main__":
    main()
