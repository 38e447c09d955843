"""
ICP solver registry: maps solver names to classes and builds a ready-to-use
solver (with its matchers) from an ``AppConfig``.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Optional, Tuple

from ..matching.matcher import Matcher
from ..utils.config import AppConfig, ICPParameters
from ..utils.logging import configure_package_logging, setup_logger
from .icp_base import ICPBase
from .icp_gauss_newton import ICPGaussNewton
from .icp_horn import ICPHornMultiCloud

logger = setup_logger(__name__)

ICP_REGISTRY: Dict[str, Callable[..., ICPBase]] = {
    "icp_horn_multicloud": ICPHornMultiCloud,
    "icp_gauss_newton": ICPGaussNewton,
}


def create_icp(name: str, matchers: Optional[Iterable[Matcher]] = None) -> ICPBase:
    """
    Instantiate a registered ICP solver.

    Raises:
        KeyError: If ``name`` is not registered.
    """
    try:
        factory = ICP_REGISTRY[name]
    except KeyError:
        raise KeyError(f"Unknown ICP solver '{name}'. Available: {sorted(ICP_REGISTRY)}") from None
    return factory(matchers)


def create_icp_from_config(cfg: AppConfig) -> Tuple[ICPBase, ICPParameters]:
    """
    Build the configured solver, its matchers and parameters, and apply the
    logging section of the config.

    Returns:
        Tuple of (icp, parameters) ready for ``icp.align(pc1, pc2, guess, parameters)``.
    """
    configure_package_logging(cfg.logging.level, cfg.logging.file)
    icp = create_icp(cfg.icp.solver)
    icp.initialize_matchers(cfg.icp.matchers)
    logger.info(
        "Configured %s with %d matcher(s): %s",
        cfg.icp.solver,
        len(icp.matchers),
        ", ".join(m.class_name for m in cfg.icp.matchers),
    )
    return icp, cfg.icp.parameters
