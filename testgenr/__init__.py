"""
Story test-case generator.

Generates test cases for Jira stories with AWS Bedrock when a story moves
into a configured workflow status, and stores them on the issue.
"""

__version__ = "1.0.0"

from testgenr.cli import main

__all__ = ["main", "__version__"]
