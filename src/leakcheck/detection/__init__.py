"""
Detection module for leakcheck.

Provides deterministic detection of known secret values in
function configuration and deployed code. Matching is exact
substring containment; no patterns or entropy heuristics.
"""

from __future__ import annotations

from leakcheck.detection.matcher import SecretMatcher, find_existing_secrets

__all__ = [
    "SecretMatcher",
    "find_existing_secrets",
]
