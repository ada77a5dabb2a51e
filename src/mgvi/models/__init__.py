"""
Forward models for the inference loop.

Submodules
----------
- `correlated_field`:
    Log-normal correlated field with a power-law spectrum, observed
    through a linear response
"""

from .correlated_field import (
    FieldConfig,
    draw_loglogslope,
    harmonic_modes,
    hartley_transform,
    inverse_hartley_transform,
    make_correlated_field,
    make_field_config,
    make_lognormal_signal,
    make_signal_response,
    power_spectrum,
    synthetic_data,
)

__all__ = [
    "FieldConfig",
    "make_field_config",
    "harmonic_modes",
    "hartley_transform",
    "inverse_hartley_transform",
    "draw_loglogslope",
    "power_spectrum",
    "make_correlated_field",
    "make_lognormal_signal",
    "make_signal_response",
    "synthetic_data",
]
