"""
binstall: manifest-driven installer for single precompiled binaries.
"""

__version__ = "0.1.0"
