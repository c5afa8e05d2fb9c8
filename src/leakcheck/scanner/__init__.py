"""
Artifact scanning for leakcheck.

Provides extraction of deployment archives into scannable payloads.
"""

from leakcheck.scanner.archive import ArchiveScanner

__all__ = [
    "ArchiveScanner",
]
