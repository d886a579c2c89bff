"""
Materials package.

Hyperelastic constitutive laws (Saint Venant–Kirchhoff, Neo-Hooke) and
stress post-processing for the elasticity and mesh-motion assemblers.
"""

from .elastic_materials import (
    MaterialLaw,
    StressType,
    ElasticMaterial,
    ThermalExpansion,
    deformation_gradient,
    check_determinant,
    second_piola_kirchhoff,
    cauchy_stress,
    von_mises,
)

__all__ = [
    'MaterialLaw',
    'StressType',
    'ElasticMaterial',
    'ThermalExpansion',
    'deformation_gradient',
    'check_determinant',
    'second_piola_kirchhoff',
    'cauchy_stress',
    'von_mises',
]
