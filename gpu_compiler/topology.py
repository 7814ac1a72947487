"""Topology descriptors: the shape of the accelerator fleet a compilation targets."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

GPU_PLATFORM_NAME = "cuda"


def platform_id(name: str) -> int:
    """Stable 64-bit fingerprint of a platform name."""
    digest = hashlib.sha256(name.encode()).digest()
    return int.from_bytes(digest[:8], "little")


def gpu_platform_id() -> int:
    return platform_id(GPU_PLATFORM_NAME)


GPU_PLATFORM_ID = gpu_platform_id()


@dataclass(frozen=True)
class TopologyDescription:
    """Platform identity plus the ordered set of device ids.

    Equality is structural over all four fields; device ids compare in order.
    """
    platform_id: int
    platform_name: str
    device_name: str
    device_ids: tuple[int, ...]

    def __post_init__(self):
        ids = tuple(int(d) for d in self.device_ids)
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate device ids in topology: {list(ids)}")
        object.__setattr__(self, "device_ids", ids)

    @property
    def device_count(self) -> int:
        return len(self.device_ids)

    def to_dict(self) -> dict:
        return {
            "platform_id": self.platform_id,
            "platform_name": self.platform_name,
            "device_name": self.device_name,
            "device_ids": list(self.device_ids),
        }

    @staticmethod
    def from_dict(d: dict) -> TopologyDescription:
        return TopologyDescription(
            platform_id=d["platform_id"],
            platform_name=d["platform_name"],
            device_name=d["device_name"],
            device_ids=tuple(d["device_ids"]),
        )


def is_same_topology(a: TopologyDescription | None, b: TopologyDescription | None) -> bool:
    if a is None or b is None:
        return False
    return a == b
