"""Selector construction — WorkloadDescriptor to SelectorSet.

Selectors are ``key:value`` (or ``key:subkey:value``) strings, each
asserting one fact about a workload. The identity issuer matches
registration entries against them, so construction is a pure function of
the descriptor: no I/O, no clock, and a stable emission order.

Keys
----
``sa``, ``ns``, ``node-name``, ``pod-uid``, ``pod-name``,
``pod-image-count``, ``pod-init-image-count``, ``pod-image``,
``pod-init-image``, ``pod-label``, ``pod-owner``, ``pod-owner-uid``,
and for a matched workload container ``container-name`` and
``container-image``.

Each image is emitted in both its tag-qualified and its digest-qualified
form so that entries can match before and after the digest is known.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator

from workload_attestor.resolution.descriptor import ContainerStatus, WorkloadDescriptor


@dataclass(frozen=True)
class SelectorSet:
    """Immutable, ordered, duplicate-free sequence of selector strings."""

    values: tuple[str, ...] = ()

    @classmethod
    def of(cls, values: Iterable[str]) -> "SelectorSet":
        """Build a set from *values*, keeping the first occurrence of each."""
        return cls(tuple(dict.fromkeys(values)))

    def as_list(self) -> list[str]:
        return list(self.values)

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def __contains__(self, item: object) -> bool:
        return item in self.values

    def __bool__(self) -> bool:
        return bool(self.values)


def image_identifiers(statuses: Iterable[ContainerStatus]) -> list[str]:
    """Return the distinct image references across *statuses*, first-seen order."""
    seen: dict[str, None] = {}
    for status in statuses:
        for ref in status.image_identifiers():
            seen.setdefault(ref, None)
    return list(seen)


def build_container_selectors(status: ContainerStatus) -> list[str]:
    """Return the selectors describing a single workload container."""
    values = [f"container-name:{status.name}"]
    values.extend(f"container-image:{ref}" for ref in image_identifiers([status]))
    return values


def build_selectors(descriptor: WorkloadDescriptor) -> SelectorSet:
    """Derive the canonical selector set for *descriptor*.

    Parameters
    ----------
    descriptor:
        A fully resolved workload.

    Returns
    -------
    SelectorSet
        Deduplicated selectors. The same descriptor always yields the
        same values in the same order.
    """
    values = [
        f"sa:{descriptor.service_account}",
        f"ns:{descriptor.namespace}",
    ]
    if descriptor.node_name:
        values.append(f"node-name:{descriptor.node_name}")
    values.extend(
        [
            f"pod-uid:{descriptor.uid}",
            f"pod-name:{descriptor.name}",
            f"pod-image-count:{len(descriptor.containers)}",
            f"pod-init-image-count:{len(descriptor.init_containers)}",
        ]
    )

    values.extend(f"pod-image:{ref}" for ref in image_identifiers(descriptor.containers))
    values.extend(
        f"pod-init-image:{ref}" for ref in image_identifiers(descriptor.init_containers)
    )

    for key, value in sorted(descriptor.labels):
        values.append(f"pod-label:{key}:{value}")
    for owner in descriptor.owners:
        values.append(f"pod-owner:{owner.kind}:{owner.name}")
        values.append(f"pod-owner-uid:{owner.kind}:{owner.uid}")

    if descriptor.container is not None:
        values.extend(build_container_selectors(descriptor.container))

    return SelectorSet.of(values)
