"""
Configuration management for structured-icp.

Provides typed pydantic models for the ICP parameters, the matcher
descriptors and the logging section, plus a YAML loader with sensible
defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, List, Any, Dict

from pydantic import BaseModel, ConfigDict, Field, ValidationError
import yaml


# -----------------------
# Typed config structures
# -----------------------


class PairWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    use_robust_kernel: bool = Field(default=False)
    robust_kernel: Literal["huber", "tukey"] = Field(default="huber")
    robust_kernel_param: float = Field(
        default=0.5,
        gt=0.0,
        description="Lower bound (meters) for the residual scale used by the robust kernel",
    )
    robust_kernel_iterations: int = Field(
        default=5,
        ge=1,
        description="Number of re-weighting passes when the robust kernel is enabled",
    )
    plane_weight: float = Field(default=1.0, ge=0.0, description="Weight of plane-to-plane pairings")
    pt2pl_weight: float = Field(default=1.0, ge=0.0, description="Weight of point-to-plane pairings")
    use_scale_estimation: bool = Field(
        default=False,
        description="Estimate a similarity scale in the closed-form solver",
    )


class ICPParameters(BaseModel):
    """Per-alignment parameters; immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    max_iterations: int = Field(default=40, ge=1)
    min_abs_step_trans: float = Field(
        default=5e-4,
        gt=0.0,
        description="Translation step (meters) below which the iteration has stalled",
    )
    min_abs_step_rot: float = Field(
        default=1e-4,
        gt=0.0,
        description="Rotation step (radians) below which the iteration has stalled",
    )
    threshold_dist: float = Field(default=1.0, gt=0.0, description="Point-to-point distance threshold (meters)")
    threshold_ang: float = Field(
        default=0.0,
        ge=0.0,
        description="Angular threshold (radians); widens the distance threshold for far points",
    )
    weight_pt2pt_layers: Dict[str, float] = Field(
        default_factory=lambda: {"raw": 1.0},
        description="Per-layer weights; point layers not listed are excluded from matching",
    )
    max_pairs_per_layer: int = Field(default=500, ge=1)
    pairings_weight_parameters: PairWeights = Field(default_factory=PairWeights)


class MatcherConfig(BaseModel):
    """Descriptor for one matcher: registry key plus parameter map."""

    model_config = ConfigDict(populate_by_name=True)

    class_name: str = Field(alias="class")
    params: Dict[str, Any] = Field(default_factory=dict)


class ICPConfig(BaseModel):
    solver: Literal["icp_horn_multicloud", "icp_gauss_newton"] = Field(default="icp_horn_multicloud")
    parameters: ICPParameters = Field(default_factory=ICPParameters)
    matchers: List[MatcherConfig] = Field(
        default_factory=lambda: [MatcherConfig(class_name="points_distance_threshold")]
    )


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class AppConfig(BaseModel):
    icp: ICPConfig = Field(default_factory=ICPConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/structured_icp/utils/config.py
    parents sequence:
      0 -> .../src/structured_icp/utils
      1 -> .../src/structured_icp
      2 -> .../src
      3 -> repo_root
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}")
