"""
Bundle an ELF binary with the shared libraries it loads at runtime.
"""

__version__ = '0.1.0'
