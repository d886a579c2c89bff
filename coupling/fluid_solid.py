"""
流体-固体耦合模块 (Fluid-Structure Interaction, FSI)

分区式耦合：每次外迭代依次求解 流体 → 界面载荷 → 结构 → 界面位移 → 网格运动(ALE)，
并将网格位移叠加到流体几何的运动部分上。
"""

import numpy as np
from typing import Dict, List, Tuple, Optional, Sequence
from dataclasses import dataclass, field
import warnings
import time

from core.exceptions import ConfigurationError
from finite_elements.assembly import GlobalAssembly
from finite_elements.boundary_conditions import BoundaryLoad
from finite_elements.global_assembly import (
    NavierStokesAssembler, ElasticityAssembler, ALEAssembler, fluid_traction,
)
from finite_elements.mesh_generation import MultiPatch, Patch, check_matching_boundaries
from finite_elements.newton import NewtonConfig, NewtonSolver
from finite_elements.transformations import side_tangent_index


@dataclass
class FsiInterface:
    """结构边 ↔ 流体边 ↔ ALE边 的对应关系"""
    beam_patch: int
    beam_side: str
    fluid_patch: int
    fluid_side: str
    ale_patch: int
    ale_side: str


@dataclass
class FSIConfig:
    """FSI配置"""
    max_iterations: int = 3  # 外迭代次数
    tolerance: Optional[float] = None  # 界面残量容差，None 表示固定迭代次数
    verbose: bool = False
    flow_newton: NewtonConfig = field(default_factory=lambda: NewtonConfig(max_iterations=50, tolerance=1e-10))
    beam_newton: NewtonConfig = field(default_factory=lambda: NewtonConfig(max_iterations=50, tolerance=1e-10))
    ale_newton: NewtonConfig = field(default_factory=lambda: NewtonConfig(max_iterations=50, tolerance=1e-10))
    drag_lift_sides: List[Tuple[int, str]] = field(default_factory=list)  # 计算阻力/升力的流体边


@dataclass
class FluidSolidState:
    """流体-固体耦合状态"""
    # 各物理场的自由向量与已施加的Dirichlet值
    flow_vector: np.ndarray
    flow_fixed: np.ndarray
    beam_vector: np.ndarray
    beam_fixed: np.ndarray
    ale_vector: np.ndarray
    ale_fixed: np.ndarray

    # 场
    velocity: Optional[MultiPatch] = None
    pressure: Optional[MultiPatch] = None
    displacement: Optional[MultiPatch] = None
    ale_displacement: Optional[MultiPatch] = None

    # 求解信息
    iteration: int = 0
    interface_residuals: List[float] = field(default_factory=list)
    newton_iterations: Dict[str, List[int]] = field(
        default_factory=lambda: {'flow': [], 'beam': [], 'ale': []})
    forces: List[np.ndarray] = field(default_factory=list)
    convergence_status: bool = False

    @classmethod
    def initial(cls, flow: GlobalAssembly, beam: GlobalAssembly,
                ale: GlobalAssembly) -> "FluidSolidState":
        """零初始状态"""
        return cls(flow_vector=np.zeros(flow.num_dofs()),
                   flow_fixed=np.zeros(flow.dof_mapper.num_fixed),
                   beam_vector=np.zeros(beam.num_dofs()),
                   beam_fixed=np.zeros(beam.dof_mapper.num_fixed),
                   ale_vector=np.zeros(ale.num_dofs()),
                   ale_fixed=np.zeros(ale.dof_mapper.num_fixed))


class FsiLoad(BoundaryLoad):
    """
    流体作用在结构边上的面力

    由当前（ALE变形后）流体几何上的速度、压力、粘度、密度求得，
    并按流体边与结构边的线元比缩放，使合力等于流体边上的积分。
    """

    def __init__(self, fluid_geometry: MultiPatch, fluid_patch: int, fluid_side: str,
                 beam_geometry: Patch, beam_side: str, viscosity: float, density: float,
                 orientation: int = 1):
        if orientation not in (1, -1):
            raise ConfigurationError(f"方向只能为 1 或 -1: {orientation}")
        self.fluid_geometry = fluid_geometry
        self.fluid_patch = fluid_patch
        self.fluid_side = fluid_side
        self.beam_geometry = beam_geometry
        self.beam_side = beam_side
        self.viscosity = viscosity
        self.density = density
        self.orientation = orientation
        self.velocity: Optional[MultiPatch] = None
        self.pressure: Optional[MultiPatch] = None

    def update(self, velocity: MultiPatch, pressure: MultiPatch):
        self.velocity = velocity
        self.pressure = pressure

    def fluid_params(self, side_params: np.ndarray) -> np.ndarray:
        s = side_params[:, side_tangent_index(self.beam_side)]
        t = s if self.orientation == 1 else 1.0 - s
        return Patch.side_params(self.fluid_side, t)

    def evaluate(self, side_params, points):
        if self.velocity is None:
            return np.zeros_like(points)
        params = self.fluid_params(side_params)
        geo = self.fluid_geometry.patch(self.fluid_patch)
        traction = fluid_traction(geo, self.velocity.patch(self.fluid_patch),
                                  self.pressure.patch(self.fluid_patch), self.fluid_side,
                                  params, self.viscosity, self.density)
        ds_fluid = np.linalg.norm(geo.jacobian(params)[:, side_tangent_index(self.fluid_side), :], axis=1)
        ds_beam = np.linalg.norm(
            self.beam_geometry.jacobian(side_params)[:, side_tangent_index(self.beam_side), :], axis=1)
        return traction * (ds_fluid / ds_beam)[:, None]


class ALEMeshMotion:
    """
    网格位移的施加/撤销

    只修改声明的流体运动片：fluid_patch → ale_patch。
    """

    def __init__(self, fluid_geometry: MultiPatch, moving_patches: Dict[int, int]):
        self.fluid_geometry = fluid_geometry
        self.moving_patches = dict(moving_patches)
        for fk in self.moving_patches:
            if not 0 <= fk < fluid_geometry.n_patches:
                raise ConfigurationError(f"流体片编号 {fk} 超出范围")
        self._applied: Optional[MultiPatch] = None

    @property
    def applied(self) -> Optional[MultiPatch]:
        return self._applied

    def apply(self, ale: MultiPatch):
        """叠加网格位移，先撤销之前施加的位移"""
        for fk, aj in self.moving_patches.items():
            if ale.patch(aj).coefs.shape != self.fluid_geometry.patch(fk).coefs.shape:
                raise ConfigurationError(
                    f"ALE片 {aj} 的系数形状 {ale.patch(aj).coefs.shape} 与流体片 {fk} "
                    f"{self.fluid_geometry.patch(fk).coefs.shape} 不一致")
        self.undo()
        for fk, aj in self.moving_patches.items():
            self.fluid_geometry.patch(fk).coefs += ale.patch(aj).coefs
        self._applied = ale.copy()

    def undo(self):
        """撤销已施加的网格位移"""
        if self._applied is None:
            return
        for fk, aj in self.moving_patches.items():
            self.fluid_geometry.patch(fk).coefs -= self._applied.patch(aj).coefs
        self._applied = None


class FluidSolidCoupling:
    """流体-固体分区耦合求解器"""

    def __init__(self,
                 flow_assembler: NavierStokesAssembler,
                 beam_assembler: ElasticityAssembler,
                 ale_assembler: ALEAssembler,
                 interfaces: Sequence[FsiInterface],
                 moving_patches: Dict[int, int],
                 config: FSIConfig = None):
        """
        初始化流体-固体耦合求解器

        Args:
            flow_assembler: 流体装配器（其几何为会被ALE修改的流体几何）
            beam_assembler: 结构装配器
            ale_assembler: 网格运动装配器（几何为流体运动部分的参考构形）
            interfaces: 界面对应关系
            moving_patches: 流体片编号 → ALE片编号
            config: FSI配置
        """
        self.flow_assembler = flow_assembler
        self.beam_assembler = beam_assembler
        self.ale_assembler = ale_assembler
        self.interfaces = list(interfaces)
        self.config = config or FSIConfig()
        self.mesh_motion = ALEMeshMotion(flow_assembler.patches(), moving_patches)

        for fk, aj in self.mesh_motion.moving_patches.items():
            if not 0 <= aj < ale_assembler.patches().n_patches:
                raise ConfigurationError(f"ALE片编号 {aj} 超出范围")
            if ale_assembler.field_bases['displacement'][aj].size != \
                    flow_assembler.patches().patch(fk).basis.size:
                raise ConfigurationError(f"ALE片 {aj} 的基与流体几何片 {fk} 不一致")

        self.loads: List[FsiLoad] = []
        self._ale_orientation: List[int] = []
        beam_geo = beam_assembler.patches()
        fluid_geo = flow_assembler.patches()
        ale_geo = ale_assembler.patches()
        for itf in self.interfaces:
            o_fluid = check_matching_boundaries(beam_geo.patch(itf.beam_patch), itf.beam_side,
                                                fluid_geo.patch(itf.fluid_patch), itf.fluid_side)
            o_ale = check_matching_boundaries(beam_geo.patch(itf.beam_patch), itf.beam_side,
                                              ale_geo.patch(itf.ale_patch), itf.ale_side)
            if o_fluid == 0 or o_ale == 0:
                raise ConfigurationError(
                    f"界面不匹配: 结构片 {itf.beam_patch}/{itf.beam_side}, "
                    f"流体片 {itf.fluid_patch}/{itf.fluid_side}, ALE片 {itf.ale_patch}/{itf.ale_side}")
            load = FsiLoad(fluid_geo, itf.fluid_patch, itf.fluid_side,
                           beam_geo.patch(itf.beam_patch), itf.beam_side,
                           flow_assembler.viscosity, flow_assembler.density, o_fluid)
            beam_assembler.boundary_conditions.add_neumann(itf.beam_patch, itf.beam_side, load)
            self.loads.append(load)
            self._ale_orientation.append(o_ale)

        # 性能监控
        self.performance_stats = {
            'total_solve_time': 0.0,
            'fluid_solve_time': 0.0,
            'solid_solve_time': 0.0,
            'mesh_deformation_time': 0.0,
            'iterations': 0,
            'residual_norm': 0.0
        }

    @staticmethod
    def interface_residual(new_dofs: Sequence[np.ndarray], old_dofs: Sequence[np.ndarray]) -> float:
        """sqrt(Σ_d ||new_d − old_d||²)"""
        return float(np.sqrt(sum(np.linalg.norm(np.asarray(n) - np.asarray(o)) ** 2
                                 for n, o in zip(new_dofs, old_dofs))))

    def _newton(self, name: str, assembler: GlobalAssembly, vector, fixed,
                config: NewtonConfig, state: FluidSolidState) -> NewtonSolver:
        solver = NewtonSolver(assembler, vector, fixed, config)
        solver.solve()
        state.newton_iterations[name].append(solver.num_iterations())
        if not solver.converged():
            warnings.warn(f"FSI迭代 {state.iteration}: {name} 的Newton求解未收敛 "
                          f"({solver.status().value}, residue {solver.residue():.3e})")
        return solver

    def interface_trace(self, displacement: MultiPatch, itf: FsiInterface, orientation: int) -> np.ndarray:
        """结构位移在ALE界面边节点处的值"""
        basis = self.ale_assembler.field_bases['displacement'][itf.ale_patch]
        local = basis.side_nodes(itf.ale_side)
        t = basis.node_params()[local][:, side_tangent_index(itf.ale_side)]
        s = t if orientation == 1 else 1.0 - t
        return displacement.patch(itf.beam_patch).eval(Patch.side_params(itf.beam_side, s))

    def iterate(self, state: FluidSolidState) -> float:
        """执行一次外迭代，返回界面残量"""
        cfg = self.config
        state.iteration += 1
        if cfg.verbose:
            print(f"{state.iteration}/{cfg.max_iterations} FSI ITERATIONS")

        # 1. 流体
        t0 = time.time()
        if cfg.verbose:
            print("   solving flow")
        flow = self._newton('flow', self.flow_assembler, state.flow_vector, state.flow_fixed,
                            cfg.flow_newton, state)
        state.flow_vector, state.flow_fixed = flow.solution_vector(), flow.fixed_dofs()
        fields = flow.solution()
        state.velocity, state.pressure = fields['velocity'], fields['pressure']
        if cfg.drag_lift_sides:
            force = self.flow_assembler.compute_force(state.velocity, state.pressure,
                                                      cfg.drag_lift_sides)
            state.forces.append(force)
            if cfg.verbose:
                print(f"   drag: {force[0]:.6e}, lift: {force[1]:.6e}")
        self.performance_stats['fluid_solve_time'] += time.time() - t0

        # 2. 界面载荷
        for load in self.loads:
            load.update(state.velocity, state.pressure)

        # 3. 结构
        t0 = time.time()
        if cfg.verbose:
            print("   solving beam")
        beam = self._newton('beam', self.beam_assembler, state.beam_vector, state.beam_fixed,
                            cfg.beam_newton, state)
        state.beam_vector, state.beam_fixed = beam.solution_vector(), beam.fixed_dofs()
        state.displacement = beam.solution()['displacement']
        self.performance_stats['solid_solve_time'] += time.time() - t0

        # 4. 界面位移 → ALE Dirichlet数据
        t0 = time.time()
        mapper = self.ale_assembler.dof_mapper
        n_comp = mapper.field_dims['displacement']
        old = [self.ale_assembler.fixed_dofs(d) for d in range(n_comp)]
        for itf, o in zip(self.interfaces, self._ale_orientation):
            self.ale_assembler.set_dirichlet_dofs(itf.ale_patch, itf.ale_side,
                                                  self.interface_trace(state.displacement, itf, o))

        # 5. 界面残量
        new = [self.ale_assembler.fixed_dofs(d) for d in range(n_comp)]
        residual = self.interface_residual(new, old)
        state.interface_residuals.append(residual)

        # 6. 网格运动
        self.mesh_motion.undo()
        if cfg.verbose:
            print("   solving ALE")
        ale = self._newton('ale', self.ale_assembler, state.ale_vector, state.ale_fixed,
                           cfg.ale_newton, state)
        state.ale_vector, state.ale_fixed = ale.solution_vector(), ale.fixed_dofs()
        state.ale_displacement = ale.solution()['displacement']

        # 7. 更新流体网格
        self.mesh_motion.apply(state.ale_displacement)
        self.performance_stats['mesh_deformation_time'] += time.time() - t0

        if cfg.verbose:
            print(f"   INTERFACE RESIDUAL {residual:.6e}")
        return residual

    def solve(self, state: Optional[FluidSolidState] = None) -> FluidSolidState:
        """执行固定次数的外迭代，或在界面残量小于容差时提前结束"""
        start = time.time()
        if state is None:
            state = FluidSolidState.initial(self.flow_assembler, self.beam_assembler,
                                            self.ale_assembler)
        for _ in range(self.config.max_iterations):
            residual = self.iterate(state)
            self.performance_stats['iterations'] += 1
            self.performance_stats['residual_norm'] = residual
            if self.config.tolerance is not None and residual < self.config.tolerance:
                state.convergence_status = True
                if self.config.verbose:
                    print(f"FSI在第 {state.iteration} 次迭代收敛")
                break
        self.performance_stats['total_solve_time'] += time.time() - start
        return state

    def get_performance_stats(self) -> Dict:
        """获取性能统计"""
        return self.performance_stats.copy()
