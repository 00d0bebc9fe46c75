"""
Utils package for the CES auto-recovery system.

This package contains the shared logging setup and time helpers.
"""

__version__ = "1.0.0"
