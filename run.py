#!/usr/bin/env python3
"""
Story Test-Case Generator

Run this script to configure projects, handle issue transition events and
inspect generated test cases.

Usage:
    python run.py configure PROJ                      # Settings from testgenr.json or TESTGENR_* env
    python run.py configure PROJ --from-aws-profile   # Credentials from the AWS default chain
    python run.py trigger event.json -d story.txt     # Handle a transition event
    python run.py list PROJ-1                         # Show stored test cases
    python run.py poll PROJ-1                         # Wait for a running generation
    python run.py test-connection PROJ                # Check Bedrock access
"""

import sys
from testgenr.cli import main

if __name__ == "__main__":
    sys.exit(main())
