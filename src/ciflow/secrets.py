from __future__ import annotations

"""Credential stores.

CONTRACT
- Inputs: explicit mapping, or names to snapshot from the process environment
- Outputs:
  - SecretStore.get(name) -> value | None
- Invariants:
  - Read-only after construction; nothing looks secrets up ambiently
  - Empty strings count as absent
- Failure:
  - None (absence is reported by callers as ConfigurationError)
"""

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Protocol


class SecretStore(Protocol):
    def get(self, name: str) -> str | None: ...

    def names(self) -> frozenset[str]: ...


@dataclass(frozen=True)
class MappingSecretStore:
    values: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def get(self, name: str) -> str | None:
        value = self.values.get(name)
        return value or None

    def names(self) -> frozenset[str]:
        return frozenset(k for k, v in self.values.items() if v)

    @classmethod
    def from_environ(
        cls, names: Iterable[str], environ: Mapping[str, str] | None = None
    ) -> MappingSecretStore:
        """Snapshot the named variables out of the process environment."""
        src = os.environ if environ is None else environ
        return cls({n: src[n] for n in names if src.get(n)})


def resolve(store: SecretStore, names: Iterable[str]) -> tuple[dict[str, str], list[str]]:
    found: dict[str, str] = {}
    missing: list[str] = []
    for n in names:
        v = store.get(n)
        if v is None:
            missing.append(n)
        else:
            found[n] = v
    return found, missing
