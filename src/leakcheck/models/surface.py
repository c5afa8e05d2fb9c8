"""
Leak surface data models for leakcheck.

A surface entity is one Lambda function seen through one leak surface:
either its environment variables or its deployed code archive. Entities
expose the text they carry as a sequence of candidates for matching.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterator, Sequence

from leakcheck.scanner.archive import ArchiveScanner

logger = logging.getLogger(__name__)


class SurfaceEntity(ABC):
    """
    Abstract base class for a function seen through a leak surface.

    Attributes:
        name: Function name
        arn: Function ARN
    """

    name: str
    arn: str

    @abstractmethod
    def iter_candidates(self) -> Iterator[str | bytes]:
        """Yield every body of text that may contain a leaked value."""
        pass

    def release(self) -> None:
        """Release transient resources held by this entity."""
        pass


@dataclass
class LambdaEnv(SurfaceEntity):
    """A function's environment variable mapping."""

    name: str
    arn: str
    env: dict[str, str] = field(default_factory=dict)

    def iter_candidates(self) -> Iterator[str]:
        for value in self.env.values():
            yield value


@dataclass
class LambdaCode(SurfaceEntity):
    """
    A function's deployment archive, downloaded to a local temp file.

    The temp file is owned by this entity until release() is called.
    """

    name: str
    arn: str
    zip_file: str

    def iter_candidates(self) -> Iterator[bytes]:
        scanner = ArchiveScanner(self.zip_file)
        for _, content in scanner.extract():
            yield content

    def release(self) -> None:
        """Delete the downloaded archive. Safe to call more than once."""
        try:
            os.remove(self.zip_file)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temp archive for {self.name}: {e}")


@dataclass
class SurfacePage:
    """One page of surface entities plus the registry cursor for the next page."""

    entities: list[SurfaceEntity] = field(default_factory=list)
    next_token: str = ""

    def __iter__(self) -> Iterator[SurfaceEntity]:
        return iter(self.entities)

    def __len__(self) -> int:
        return len(self.entities)

    def release(self) -> None:
        """Release every entity on the page."""
        release_all(self.entities)


def release_all(entities: Sequence[SurfaceEntity]) -> None:
    """Release a batch of entities."""
    for entity in entities:
        entity.release()
