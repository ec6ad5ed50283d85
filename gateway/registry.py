"""Tool registry: the catalogue of descriptors and alias resolution."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from models.schema import ToolDescriptor, ToolSource

logger = logging.getLogger(__name__)

# Historical spellings the upstream AI backend still emits.
DEFAULT_SYNONYMS: dict[str, str] = {
    "brave-web-search": "brave-search",
    "web-search": "brave-search",
}


def normalize_name(name: str) -> str:
    """Collapse case and hyphen/underscore variants to one lookup key."""

    return name.strip().lower().replace("_", "-")


@dataclass(frozen=True)
class _Snapshot:
    """Immutable registry state. Replaced wholesale on every write."""

    descriptors: Mapping[str, ToolDescriptor] = field(
        default_factory=lambda: MappingProxyType({})
    )
    index: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


class ToolRegistry:
    """Read-mostly catalogue of tool descriptors.

    Writes build a new snapshot and publish it with a single assignment, so a
    reader iterating the catalogue never observes a half-applied registration.
    """

    def __init__(
        self,
        synonyms: Optional[Mapping[str, str]] = None,
        is_connected: Optional[Callable[[str], bool]] = None,
        is_available: Optional[Callable[[ToolDescriptor], bool]] = None,
    ):
        self._synonyms = {
            normalize_name(alias): normalize_name(target)
            for alias, target in {**DEFAULT_SYNONYMS, **(synonyms or {})}.items()
        }
        self._is_connected = is_connected or (lambda backend: False)
        self._is_available = is_available or (lambda descriptor: True)
        self._write_lock = threading.Lock()
        self._snapshot = _Snapshot()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def register(self, descriptor: ToolDescriptor) -> None:
        """Add a descriptor, replacing any existing one with the same name."""

        self.register_many([descriptor])

    def register_many(self, descriptors: Iterable[ToolDescriptor]) -> None:
        """Register several descriptors as one atomic update."""

        with self._write_lock:
            current = dict(self._snapshot.descriptors)
            for descriptor in descriptors:
                if descriptor.name in current:
                    logger.debug(f"Replacing tool descriptor: {descriptor.name}")
                current[descriptor.name] = descriptor
            self._snapshot = _Snapshot(
                descriptors=MappingProxyType(current),
                index=MappingProxyType(self._build_index(current.values())),
            )
        logger.debug(f"Registry now holds {len(current)} tools")

    def unregister(self, name: str) -> bool:
        """Remove a descriptor by exact name. Returns False if absent."""

        with self._write_lock:
            current = dict(self._snapshot.descriptors)
            if current.pop(name, None) is None:
                return False
            self._snapshot = _Snapshot(
                descriptors=MappingProxyType(current),
                index=MappingProxyType(self._build_index(current.values())),
            )
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def resolve(self, name: str) -> Optional[ToolDescriptor]:
        """Find the descriptor for a name or alias. Returns None if unknown."""

        if not name:
            return None

        snapshot = self._snapshot
        key = normalize_name(name)
        target = snapshot.index.get(key)
        if target is None and key in self._synonyms:
            target = snapshot.index.get(self._synonyms[key])
        if target is None:
            return None
        return snapshot.descriptors.get(target)

    def list(self) -> list[ToolDescriptor]:
        """Return descriptors in listing order.

        Local tools come first, then hosted tools in the order their backend
        reported them, then local stand-ins for hosted backends that are not
        connected (only when their credentials are present). A stand-in
        whose name was adopted by a hosted descriptor is never listed; the
        hosted descriptor already routes to it.
        """

        snapshot = self._snapshot
        regular = [d for d in snapshot.descriptors.values() if d.fallback_for is None]
        # sort is stable, so hosted tools keep their reported order
        regular.sort(key=lambda d: 0 if d.source is ToolSource.LOCAL else 1)

        stand_ins = [
            d
            for d in snapshot.descriptors.values()
            if d.fallback_for is not None
            and snapshot.index.get(normalize_name(d.name)) == d.name
            and not self._is_connected(d.fallback_for)
            and self._is_available(d)
        ]
        return regular + stand_ins

    def names(self) -> list[str]:
        """Return every registered name, including unlisted stand-ins."""

        return list(self._snapshot.descriptors.keys())

    def __len__(self) -> int:
        return len(self._snapshot.descriptors)

    def __contains__(self, name: str) -> bool:
        return self.resolve(name) is not None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _build_index(descriptors: Iterable[ToolDescriptor]) -> dict[str, str]:
        """Map every lookup key to a descriptor name.

        Later passes override earlier ones: stand-in names and aliases first,
        then aliases of regular descriptors, then regular names. A hosted
        descriptor that adopted a stand-in's name therefore wins over it.
        """

        descriptors = list(descriptors)
        stand_ins = [d for d in descriptors if d.fallback_for is not None]
        regular = [d for d in descriptors if d.fallback_for is None]

        index: dict[str, str] = {}
        for descriptor in stand_ins:
            for alias in descriptor.aliases:
                index[normalize_name(alias)] = descriptor.name
            index[normalize_name(descriptor.name)] = descriptor.name
        for descriptor in regular:
            for alias in descriptor.aliases:
                index[normalize_name(alias)] = descriptor.name
        for descriptor in regular:
            index[normalize_name(descriptor.name)] = descriptor.name
        return index
