"""
InstanceIdentity: One token per bridge process, generated at start and never persisted.

Used two ways, and the two loop checks stay separate:
    - as the overlay source tag this process claims ('setsource <token>')
    - as the per-process header key 'x-via-<token>' stamped on everything published to the broker

Property of Uncompromising Sensors LLC.
"""

import uuid
from dataclasses import dataclass
from typing import Mapping

SOURCE_HEADER = 'x-overlay-source'
VIA_HEADER_PREFIX = 'x-via-'


@dataclass(frozen=True)
class InstanceIdentity:
    token: str

    @classmethod
    def generate(cls, prefix: str = 'proxy') -> 'InstanceIdentity':
        """'<prefix>-<uuid1>' (time-based, unique per process start)"""
        return cls(f"{prefix}-{uuid.uuid1()}")

    @property
    def source(self) -> str:
        return self.token

    @property
    def viaHeader(self) -> str:
        return f"{VIA_HEADER_PREFIX}{self.token}"

    @property
    def setSourceCommand(self) -> str:
        return f"setsource {self.token}"

    def isOwnSource(self, headers: Mapping[str, str]) -> bool:
        """Overlay event that this process itself caused (echo of our own command)."""
        return headers.get(SOURCE_HEADER) == self.token

    def hasVisited(self, headers: Mapping[str, str]) -> bool:
        """Broker message that this process published."""
        return self.viaHeader in headers

    def __str__(self) -> str:
        return self.token
