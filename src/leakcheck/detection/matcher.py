"""
Exact-value secret matcher for leakcheck.

A secret matches a candidate when its value is a literal, case-sensitive
substring of the candidate. There is no normalization, tokenization or
pattern matching: exact leaks are never missed, while transformed or
split values are, and short common values produce false positives.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from leakcheck.models.secret import Secret
from leakcheck.models.surface import SurfaceEntity


class SecretMatcher:
    """
    Matches known secret values against candidate text.

    Text candidates are compared as strings. Byte candidates (archive
    entries) are compared byte for byte against the UTF-8 encoding of
    each secret value, so undecodable content is still searched.
    """

    def match(self, secrets: Sequence[Secret], candidate: str | bytes) -> list[Secret]:
        """
        Get the secrets whose value appears in the candidate.

        Args:
            secrets: Secrets to look for
            candidate: Text or raw bytes to search

        Returns:
            Matching secrets, in the order given
        """
        if isinstance(candidate, bytes):
            encoded = [(s, s.value.encode("utf-8", "surrogatepass")) for s in secrets]
            return [s for s, value in encoded if value in candidate]
        return [s for s in secrets if s.value in candidate]

    def match_all(
        self, secrets: Sequence[Secret], candidates: Iterable[str | bytes]
    ) -> list[Secret]:
        """
        Accumulate matches over several candidates.

        A secret found in two candidates is listed twice.
        """
        found: list[Secret] = []
        for candidate in candidates:
            found.extend(self.match(secrets, candidate))
        return found

    def match_entity(
        self, secrets: Sequence[Secret], entity: SurfaceEntity
    ) -> list[Secret]:
        """Match secrets against every candidate an entity exposes."""
        return self.match_all(secrets, entity.iter_candidates())


def find_existing_secrets(value: str | bytes, secrets: Sequence[Secret]) -> list[Secret]:
    """Convenience wrapper matching a single candidate."""
    return SecretMatcher().match(secrets, value)
