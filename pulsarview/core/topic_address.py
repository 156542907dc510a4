"""
Topic address parsing and formatting.

Three input forms are accepted:

- fully qualified: ``persistent://tenant/namespace/name`` (or ``non-persistent://``)
- short: ``tenant/namespace/name``, assumed persistent
- bare: ``name``, assumed persistent under ``public/default``

Parsing never fails. Malformed input degrades to a best-effort address and the
``confidence`` field records which form matched, so callers can tell a
confidently parsed address from a guess.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import Enum
from urllib.parse import quote

type TopicName = str
type PartitionIndex = int

DEFAULT_TENANT = "public"
DEFAULT_NAMESPACE = "default"
PARTITION_SUFFIX = "-partition-"

_FULLY_QUALIFIED_RE = re.compile(
    r"^(persistent|non-persistent)://([^/]+)/([^/]+)/(.+)$"
)
_PARTITION_RE = re.compile(r"^(.+)-partition-(0|[1-9][0-9]*)$")


class PersistenceMode(Enum):
    """Whether topic messages are durably stored."""

    PERSISTENT = "persistent"
    NON_PERSISTENT = "non-persistent"


class ParseConfidence(Enum):
    """Which input form an address was parsed from."""

    FULLY_QUALIFIED = "fully-qualified"
    SHORT = "short"
    GUESSED = "guessed"


def _encode(segment: str) -> str:
    return quote(segment, safe="")


def _display(segment: str) -> str:
    # ":", "=" and "@" are legal in topic names and valid path characters
    return quote(segment, safe=":=@")


def split_partition_suffix(name: str) -> tuple[str, PartitionIndex | None]:
    """Split ``orders-partition-3`` into ``("orders", 3)``."""
    match = _PARTITION_RE.match(name)
    if match is None:
        return name, None
    return match.group(1), int(match.group(2))


@dataclass(frozen=True, slots=True)
class TopicAddress:
    """An immutable, parsed topic address."""

    tenant: str
    namespace: str
    local_name: TopicName
    persistence: PersistenceMode = PersistenceMode.PERSISTENT
    partition_index: PartitionIndex | None = None
    confidence: ParseConfidence = ParseConfidence.FULLY_QUALIFIED

    @classmethod
    def parse(cls, raw: str) -> TopicAddress:
        """Parse any of the accepted forms. Never raises."""
        text = raw.strip()

        match = _FULLY_QUALIFIED_RE.match(text)
        if match:
            name, index = split_partition_suffix(match.group(4))
            return cls(
                tenant=match.group(2),
                namespace=match.group(3),
                local_name=name,
                persistence=PersistenceMode(match.group(1)),
                partition_index=index,
                confidence=ParseConfidence.FULLY_QUALIFIED,
            )

        parts = text.split("/")
        if len(parts) == 3:
            name, index = split_partition_suffix(parts[2])
            return cls(
                tenant=parts[0],
                namespace=parts[1],
                local_name=name,
                partition_index=index,
                confidence=ParseConfidence.SHORT,
            )

        name, index = split_partition_suffix(text)
        return cls(
            tenant=DEFAULT_TENANT,
            namespace=DEFAULT_NAMESPACE,
            local_name=name,
            partition_index=index,
            confidence=ParseConfidence.GUESSED,
        )

    @classmethod
    def of(
        cls,
        tenant: str,
        namespace: str,
        name: str,
        persistence: PersistenceMode = PersistenceMode.PERSISTENT,
    ) -> TopicAddress:
        """Build an address from already separated parts."""
        local_name, index = split_partition_suffix(name)
        return cls(tenant, namespace, local_name, persistence, index)

    @property
    def is_persistent(self) -> bool:
        return self.persistence is PersistenceMode.PERSISTENT

    @property
    def is_guess(self) -> bool:
        return self.confidence is ParseConfidence.GUESSED

    @property
    def physical_name(self) -> str:
        """Local name including the partition suffix, if any."""
        if self.partition_index is None:
            return self.local_name
        return f"{self.local_name}{PARTITION_SUFFIX}{self.partition_index}"

    @property
    def namespace_path(self) -> str:
        return f"{self.tenant}/{self.namespace}"

    def partition(self, index: PartitionIndex) -> TopicAddress:
        """Address of one partition sub-topic."""
        if index < 0:
            raise ValueError(f"Partition index must be >= 0, got {index}")
        return replace(self, partition_index=index)

    def base(self) -> TopicAddress:
        """Address of the logical topic, without any partition."""
        if self.partition_index is None:
            return self
        return replace(self, partition_index=None)

    def rest_path(self) -> str:
        """Percent-encoded ``mode/tenant/namespace/name`` fragment for request URLs."""
        return "/".join(
            (
                self.persistence.value,
                _encode(self.tenant),
                _encode(self.namespace),
                _encode(self.physical_name),
            )
        )

    def format(self, mode: PersistenceMode | None = None) -> str:
        """Fully-qualified form; characters that are not valid in a path segment are percent-encoded."""
        persistence = mode or self.persistence
        return (
            f"{persistence.value}://{_display(self.tenant)}/"
            f"{_display(self.namespace)}/{_display(self.physical_name)}"
        )

    def __str__(self) -> str:
        return (
            f"{self.persistence.value}://{self.tenant}/{self.namespace}/"
            f"{self.physical_name}"
        )


@dataclass(frozen=True, slots=True)
class TopicSummary:
    """One logical topic from a namespace listing."""

    address: TopicAddress
    partition_count: int = 0

    @property
    def is_partitioned(self) -> bool:
        return self.partition_count > 0

    @property
    def name(self) -> str:
        return self.address.local_name


def collapse_partitions(
    listing: Iterable[str], partitioned: Iterable[str] = ()
) -> list[TopicSummary]:
    """Deduplicate a raw topic listing into logical topics.

    The admin listing returns every partition sub-topic individually and does
    not label them, so ``orders-partition-0`` and ``orders-partition-1`` are
    folded into ``orders`` with a partition count of 2. Names from the
    partitioned-topic listing are added even when none of their partitions
    showed up (for example before the first producer connects). The count is
    the highest index seen plus one, since a listing can miss a partition.
    """
    bases: dict[TopicAddress, set[int]] = {}

    for raw in listing:
        address = TopicAddress.parse(raw)
        partitions = bases.setdefault(_listing_key(address), set())
        if address.partition_index is not None:
            partitions.add(address.partition_index)

    for raw in partitioned:
        bases.setdefault(_listing_key(TopicAddress.parse(raw)), set())

    return [
        TopicSummary(address=key, partition_count=max(indices) + 1 if indices else 0)
        for key, indices in sorted(
            bases.items(), key=lambda item: (item[0].local_name, item[0].persistence.value)
        )
    ]


def _listing_key(address: TopicAddress) -> TopicAddress:
    # confidence is normalized so short and fully-qualified spellings collapse
    return replace(
        address.base(), confidence=ParseConfidence.FULLY_QUALIFIED
    )
