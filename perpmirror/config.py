"""Engine configuration and YAML loading.

``EngineConfig`` carries the numeric knobs that are not governance parameters.
It is an immutable value threaded through call sites as ``config=``; there is
no module-level mutable default.

Config file layout (both sections optional)::

    engine:
      funding_interval: 28800
      index_normalized_funding: false
    gov:
      initial_margin: "0.1"
      ema_alpha: "0.003327787021630616"

Quote decimal values in YAML: unquoted numbers load as floats and are
converted through their shortest ``repr``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping

import yaml

from .core.fixed_point import DECIMALS, LN_UPPER_BOUND, WORKING_PRECISION, to_decimal
from .core.types import GovParams


@dataclass(frozen=True)
class EngineConfig:
    decimals: int = DECIMALS
    working_precision: int = WORKING_PRECISION
    funding_interval: int = 28800  # 8 hours
    index_normalized_funding: bool = False
    ln_upper_bound: Decimal = LN_UPPER_BOUND

    def __post_init__(self) -> None:
        for name in ("decimals", "working_precision", "funding_interval"):
            val = getattr(self, name)
            if not isinstance(val, int) or isinstance(val, bool):
                raise TypeError(f"{name} must be int")
            if val <= 0:
                raise ValueError(f"{name} must be positive: {val}")
        if self.working_precision < 2 * self.decimals:
            raise ValueError("working_precision must be at least 2 * decimals")
        if not isinstance(self.index_normalized_funding, bool):
            raise TypeError("index_normalized_funding must be bool")
        bound = to_decimal(self.ln_upper_bound)
        if bound <= 1:
            raise ValueError(f"ln_upper_bound must be > 1: {bound}")
        object.__setattr__(self, "ln_upper_bound", bound)


DEFAULT_CONFIG = EngineConfig()

_ENGINE_KEYS = frozenset(EngineConfig.__dataclass_fields__)
_GOV_KEYS = frozenset(GovParams.__dataclass_fields__)


def _require_mapping(obj: Any, *, name: str) -> Mapping[str, Any]:
    if obj is None:
        return {}
    if not isinstance(obj, Mapping):
        raise TypeError(f"{name} must be a mapping")
    return obj


def _reject_unknown(obj: Mapping[str, Any], allowed: frozenset[str], *, name: str) -> None:
    unknown = sorted(str(k) for k in obj if k not in allowed)
    if unknown:
        raise ValueError(f"unknown {name} keys: {', '.join(unknown)}")


def engine_config_from_mapping(obj: Mapping[str, Any]) -> EngineConfig:
    obj = _require_mapping(obj, name="engine")
    _reject_unknown(obj, _ENGINE_KEYS, name="engine")
    return EngineConfig(**dict(obj))


def gov_params_from_mapping(obj: Mapping[str, Any]) -> GovParams:
    obj = _require_mapping(obj, name="gov")
    _reject_unknown(obj, _GOV_KEYS, name="gov")
    return GovParams(**{k: to_decimal(v) for k, v in obj.items()})


def load_config(path: str | Path) -> tuple[EngineConfig, GovParams]:
    """Load ``(EngineConfig, GovParams)`` from a YAML file."""
    raw = Path(path).read_text(encoding="utf-8")
    root = _require_mapping(yaml.safe_load(raw), name="config")
    _reject_unknown(root, frozenset({"engine", "gov"}), name="config")
    config = engine_config_from_mapping(root.get("engine"))
    gov = gov_params_from_mapping(root.get("gov"))
    return config, gov
