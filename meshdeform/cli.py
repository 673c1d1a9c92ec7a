"""CLI entry point: Typer subcommands."""

import logging
from pathlib import Path
from typing import Optional

import numpy as np
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import SimulationConfig
from .core.mesh import DeformableMesh
from .massspring.integrators import IntegrationScheme
from .validation import DeformSolverError

app = typer.Typer(
    name="meshdeform",
    help="Interactive mesh deformation: mass-spring, ARAP and 2D FEM",
    no_args_is_help=True,
)

console = Console()

# dragged vertex targets: out of plane for surface solvers, in plane for FEM
SURFACE_TARGET = (0.0, 0.0, 1.0)
PLANAR_TARGET = (0.5, 0.5, 0.0)


def _configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def default_constraints(n: int):
    """Four grid corners fixed, vertex n + 1 dragged."""
    fixed = [0, n - 1, n * (n - 1), n * n - 1]
    return fixed, n + 1


def _run_mass_spring(mesh: DeformableMesh, cfg: SimulationConfig, steps: int, progress, task):
    from .massspring.system import MassSpringSystem

    ms = cfg.mass_spring
    system = MassSpringSystem(
        scheme=IntegrationScheme(ms.scheme),
        max_pull=ms.max_pull,
        external_force_factor=ms.external_force_factor,
    )
    mesh.build_mass_spring_system(system, ms.mass, ms.damping, ms.stiffness)
    result = None
    for _ in range(steps):
        result = system.iterate(ms.dt)
        result.raise_for_status(f"mass-spring ({ms.scheme})")
        mesh.read_mass_spring_system(system)
        progress.advance(task)
    return result


def _run_arap(mesh: DeformableMesh, cfg: SimulationConfig, steps: int, progress, task):
    from .arap.solver import ArapSolver

    ac = cfg.arap
    arap = ArapSolver(
        edge_weight=ac.edge_weight,
        anchor_step=ac.anchor_step,
        max_iterations=ac.max_iterations,
    )
    if not mesh.build_arap(arap, ac.anchor_weight):
        console.print("[red]failed[/]: ARAP factorization (is every mesh piece anchored?)")
        raise typer.Exit(1)
    result = None
    for _ in range(steps):
        result = arap.solve(ac.epsilon)
        result.raise_for_status("ARAP")
        mesh.read_arap(arap)
        progress.advance(task)
    return result


def _run_fem(mesh: DeformableMesh, cfg: SimulationConfig, steps: int, progress, task):
    from .fem.solver import FemSolver

    fc = cfg.fem
    fem = FemSolver(
        force_gain=fc.force_gain,
        max_step=fc.max_step,
        linear_solver=fc.linear_solver,
        cg_tol=fc.cg_tol,
        cg_maxiter=fc.cg_maxiter,
    )
    _, dragged = default_constraints(cfg.grid_size)
    if not mesh.build_fem(fem, fc.mu, fc.lam, moving_constraints=[(dragged, PLANAR_TARGET)]):
        console.print("[red]failed[/]: FEM boundary conditions")
        raise typer.Exit(1)
    result = None
    for _ in range(steps):
        result = fem.solve()
        result.raise_for_status("FEM")
        mesh.read_fem(fem)
        progress.advance(task)
    return result


RUNNERS = {
    "mass_spring": _run_mass_spring,
    "arap": _run_arap,
    "fem": _run_fem,
}


@app.command()
def run(
    solver: Optional[str] = typer.Option(None, "--solver", help="solver (mass_spring/arap/fem)"),
    scheme: Optional[str] = typer.Option(None, "--scheme", help="mass-spring integration scheme"),
    steps: Optional[int] = typer.Option(None, "--steps", help="number of frames"),
    grid: Optional[int] = typer.Option(None, "--grid", help="vertices per grid side"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="config file (TOML)"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="debug logging"),
):
    """Deform a square grid by dragging one vertex with four corners fixed."""
    _configure_logging(verbose)

    if config_path is not None:
        cfg = SimulationConfig.from_toml(config_path)
    else:
        cfg = SimulationConfig.default()

    overrides = {}
    if solver is not None:
        overrides["solver"] = solver
    if steps is not None:
        overrides["steps"] = steps
    if grid is not None:
        overrides["grid_size"] = grid
    if scheme is not None:
        overrides["mass_spring"] = cfg.mass_spring.model_copy(update={"scheme": scheme}).model_dump()
    if overrides:
        try:
            cfg = SimulationConfig(**{**cfg.model_dump(), **overrides})
        except ValueError as e:
            console.print(f"[red]invalid option[/]: {e}")
            raise typer.Exit(2)

    mesh = DeformableMesh.grid(cfg.grid_length, cfg.grid_size)
    fixed, dragged = default_constraints(cfg.grid_size)
    mesh.set_constraints(fixed, [(dragged, SURFACE_TARGET)])
    initial = mesh.vertices.copy()

    console.print(
        f"\n[bold]{cfg.solver}[/]: {cfg.grid_size}x{cfg.grid_size} grid, "
        f"fixed {fixed}, dragging vertex {dragged}\n"
    )

    with Progress(
        SpinnerColumn(), TextColumn("{task.description}"), BarColumn(), console=console
    ) as progress:
        task = progress.add_task(f"[cyan]{cfg.solver}[/]", total=cfg.steps)
        try:
            result = RUNNERS[cfg.solver](mesh, cfg, cfg.steps, progress, task)
        except DeformSolverError as e:
            console.print(f"[red]failed[/]: {e}")
            raise typer.Exit(1)

    disp = np.linalg.norm(mesh.vertices - initial, axis=1)
    table = Table(title="Displaced vertices")
    table.add_column("id", justify="right")
    table.add_column("x", justify="right")
    table.add_column("y", justify="right")
    table.add_column("z", justify="right")
    table.add_column("|u|", justify="right")
    for i in np.nonzero(disp > 1e-9)[0]:
        x, y, z = mesh.vertices[i]
        table.add_row(str(i), f"{x:.4f}", f"{y:.4f}", f"{z:.4f}", f"{disp[i]:.4f}")
    console.print(table)

    if cfg.steps > 0:
        console.print(f"[green]done[/]: {cfg.steps} steps, last status {result.status.value}")
    else:
        console.print("[green]done[/]: 0 steps")


@app.command()
def schemes():
    """List the mass-spring integration schemes."""
    table = Table(title="Integration schemes")
    table.add_column("name")
    for s in IntegrationScheme:
        table.add_row(s.value)
    console.print(table)


if __name__ == "__main__":
    app()
