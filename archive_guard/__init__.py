"""
Archive Guard.

Rate-limited access to a live-concert streaming catalog and gap detection
against a personal recording archive.
"""

__version__ = "0.1.0"
