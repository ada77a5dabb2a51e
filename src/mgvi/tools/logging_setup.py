"""
Module: mgvi.tools.logging_setup
--------------------------------
Logging configuration for scripts and notebooks that drive the
inference loop.

Functions
---------
- `setup_logging`:
    Configure the root level and quiet third-party loggers
"""

import logging
import os

NOISY_LOGGERS = [
    # JAX compilation and backend chatter
    "jax",
    "jax._src.xla_bridge",
    "jax._src.dispatch",
    "absl",
    # Plotting stack, often imported next to us
    "matplotlib",
    "PIL",
]


def setup_logging(verbose_count: int = 0, quiet_count: int = 0) -> int:
    """
    Description
    -----------
    Configure root logging level and tame third-party noise.

    Root level is INFO by default, DEBUG with one or more verbose flags
    and ERROR with one or more quiet flags. Quiet wins over verbose.
    Third-party loggers listed in `NOISY_LOGGERS` are held at WARNING
    unless the environment variable `MGVI_DEBUG_THIRDPARTY=1` is set.

    Parameters
    ----------
    - `verbose_count` (int):
        Number of verbosity flags given.
    - `quiet_count` (int):
        Number of quiet flags given.

    Returns
    -------
    - `root_level` (int):
        The level the root logger was set to.
    """
    if quiet_count >= 1:
        root_level = logging.ERROR
    elif verbose_count >= 1:
        root_level = logging.DEBUG
    else:
        root_level = logging.INFO

    logging.basicConfig(level=root_level, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(root_level)

    allow_thirdparty_debug = os.getenv("MGVI_DEBUG_THIRDPARTY", "") == "1"
    if not allow_thirdparty_debug:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(root_level, logging.WARNING))

    logging.getLogger("mgvi").setLevel(root_level)
    return root_level
