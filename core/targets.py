"""
Target catalog: physical and optical constants per target class.
"""
from dataclasses import dataclass, replace
from typing import Dict

from utils.failures import ConfigError


@dataclass(frozen=True)
class TargetConstants:
    """Real-world width of a target and the horizontal FOV of the camera watching it."""
    name: str
    physical_width_m: float
    fov_deg: float

    def __post_init__(self):
        if self.physical_width_m <= 0:
            raise ConfigError(f"target '{self.name}': physical width must be positive")
        if not 0 < self.fov_deg < 180:
            raise ConfigError(f"target '{self.name}': field of view must be in (0, 180) degrees")

    def replace(self, **changes) -> "TargetConstants":
        return replace(self, **changes)


CARGO = TargetConstants(name="cargo", physical_width_m=0.3302, fov_deg=60.0)   # 13 in ball
HATCH = TargetConstants(name="hatch", physical_width_m=0.4826, fov_deg=60.0)   # 19 in panel

TARGET_CATALOG: Dict[str, TargetConstants] = {
    CARGO.name: CARGO,
    HATCH.name: HATCH,
}


def get_target(name: str) -> TargetConstants:
    try:
        return TARGET_CATALOG[name]
    except KeyError:
        raise ConfigError(
            f"unknown target '{name}' (known: {', '.join(sorted(TARGET_CATALOG))})"
        ) from None
