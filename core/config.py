"""
仿真配置

SimulationConfig 汇总流体、结构、网格运动的物理参数与数值参数，
支持 YAML / JSON 读写，并构造各求解器所需的配置对象。
"""

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Dict

import yaml

from finite_elements.assembly import AssemblerOptions
from finite_elements.newton import NewtonConfig
from finite_elements.solvers import SolverConfig
from materials.elastic_materials import ElasticMaterial
from coupling.fluid_solid import FSIConfig
from .exceptions import ConfigurationError

DEFAULT_PHYSICS = {
    'fluid': {'viscosity': 1.0, 'density': 1.0, 'inflow_velocity': 1.0},
    'solid': {'young_modulus': 1000.0, 'poisson_ratio': 0.3, 'density': 1.0,
              'law': 'saint_venant_kirchhoff'},
    'ale': {'young_modulus': 1.0, 'poisson_ratio': 0.4, 'density': 1.0,
            'law': 'saint_venant_kirchhoff'},
}

DEFAULT_NUMERICAL = {
    'newton': {'max_iterations': 100, 'tolerance': 1e-12, 'verbosity': 'none',
               'linear_solver': 'lu'},
    'fsi': {'iterations': 3, 'tolerance': None, 'verbose': False},
    'assembly': {'dirichlet_strategy': 'elimination', 'penalty': 1e9, 'n_threads': 1},
}

PHYSICS_NAMES = ('flow', 'beam', 'ale')


def _merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """递归合并，overrides 优先"""
    merged = copy.deepcopy(defaults)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass
class SimulationConfig:
    """统一仿真配置类"""

    # 基本信息
    name: str = "simulation"
    description: str = ""
    version: str = "1.0.0"

    # 物理参数
    physics_params: Dict[str, Any] = field(default_factory=dict)

    # 数值参数
    numerical_params: Dict[str, Any] = field(default_factory=dict)

    # 输出设置
    output_params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """补全默认值"""
        self.physics_params = _merge(DEFAULT_PHYSICS, self.physics_params)
        self.numerical_params = _merge(DEFAULT_NUMERICAL, self.numerical_params)
        self.output_params = _merge({'output_dir': './output', 'save_plots': True},
                                    self.output_params)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            'name': self.name,
            'description': self.description,
            'version': self.version,
            'physics_params': self.physics_params,
            'numerical_params': self.numerical_params,
            'output_params': self.output_params,
        }

    def to_yaml(self, filepath: str):
        """保存为YAML文件"""
        with open(filepath, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, allow_unicode=True)

    def to_json(self, filepath: str):
        """保存为JSON文件"""
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SimulationConfig':
        unknown = set(data or {}) - {'name', 'description', 'version', 'physics_params',
                                     'numerical_params', 'output_params'}
        if unknown:
            raise ConfigurationError(f"未知的配置项: {sorted(unknown)}")
        return cls(**(data or {}))

    @classmethod
    def from_yaml(cls, filepath: str) -> 'SimulationConfig':
        """从YAML文件加载"""
        with open(filepath, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data)

    @classmethod
    def from_json(cls, filepath: str) -> 'SimulationConfig':
        """从JSON文件加载"""
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return cls.from_dict(data)

    # ---- 构造求解器配置 ----
    def _material(self, key: str) -> ElasticMaterial:
        p = self.physics_params[key]
        return ElasticMaterial(young_modulus=float(p['young_modulus']),
                               poisson_ratio=float(p['poisson_ratio']),
                               density=float(p.get('density', 1.0)),
                               law=p.get('law', 'saint_venant_kirchhoff'))

    def solid_material(self) -> ElasticMaterial:
        return self._material('solid')

    def ale_material(self) -> ElasticMaterial:
        return self._material('ale')

    def newton_config(self, physics: str = None) -> NewtonConfig:
        """
        Newton配置；numerical_params['newton'][physics] 中的项覆盖公共设置
        physics: 'flow', 'beam', 'ale' 或 None
        """
        params = dict(self.numerical_params['newton'])
        overrides = {name: params.pop(name) for name in PHYSICS_NAMES if name in params}
        if physics is not None:
            if physics not in PHYSICS_NAMES:
                raise ConfigurationError(f"未知的物理场: {physics}")
            params.update(overrides.get(physics) or {})
        return NewtonConfig(max_iterations=int(params['max_iterations']),
                            tolerance=float(params['tolerance']),
                            verbosity=params['verbosity'],
                            linear_solver=SolverConfig(solver_type=params['linear_solver']))

    def fsi_config(self) -> FSIConfig:
        p = self.numerical_params['fsi']
        tol = p.get('tolerance')
        return FSIConfig(max_iterations=int(p['iterations']),
                         tolerance=None if tol is None else float(tol),
                         verbose=bool(p.get('verbose', False)),
                         flow_newton=self.newton_config('flow'),
                         beam_newton=self.newton_config('beam'),
                         ale_newton=self.newton_config('ale'),
                         drag_lift_sides=[tuple(s) for s in p.get('drag_lift_sides', [])])

    def assembler_options(self) -> AssemblerOptions:
        p = self.numerical_params['assembly']
        return AssemblerOptions(dirichlet_strategy=p['dirichlet_strategy'],
                                penalty=float(p['penalty']),
                                n_threads=int(p['n_threads']))
