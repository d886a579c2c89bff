"""
Coupling package for multi-physics simulations.

Partitioned fluid-structure interaction: flow, structure and mesh motion
solved in turn with interface load and displacement transfer.
"""

from .fluid_solid import (
    FsiInterface,
    FSIConfig,
    FluidSolidState,
    FsiLoad,
    ALEMeshMotion,
    FluidSolidCoupling,
)

__all__ = [
    'FsiInterface',
    'FSIConfig',
    'FluidSolidState',
    'FsiLoad',
    'ALEMeshMotion',
    'FluidSolidCoupling',
]
