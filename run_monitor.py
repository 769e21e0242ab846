#!/usr/bin/env python3
"""
Run script for the FallGuard monitor

Usage:
    python run_monitor.py run --scenario fall --silent     # Monitor a simulated fall
    python run_monitor.py history stats                    # Alert history statistics
    python run_monitor.py contacts add --name Ann --phone +15551234567

Make sure to install dependencies first:
    pip install -e .
"""

import os
import sys

# Add the repository root to the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fallguard.main import main

if __name__ == '__main__':
    main()
