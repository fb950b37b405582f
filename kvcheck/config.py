"""
Validation configuration.

Configuration lives in a ``[validation]`` table of a TOML file, for example:

    [validation]
    expect_revision_unique = true
    timeout_seconds = 60.0
"""

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Union

import toml


@dataclass(frozen=True)
class ValidationConfig:
    # False when the store may report one revision for several concurrent
    # mutations: write responses are then compared without their revision and
    # watch events are unique per (revision, key) instead of per revision.
    expect_revision_unique: bool = True
    # Bound on the linearizability search; exceeding it is a failure.
    timeout_seconds: float = 60.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"unknown validation settings: {', '.join(sorted(unknown))}")
        return cls(**data)

    @classmethod
    def from_toml(cls, path: Union[str, Path]) -> "ValidationConfig":
        with open(path) as f:
            data = toml.load(f)
        return cls.from_dict(data.get("validation", {}))

    def to_toml(self) -> str:
        return toml.dumps({"validation": asdict(self)})
