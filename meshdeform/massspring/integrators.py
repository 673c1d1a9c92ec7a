"""Explicit time integration schemes for particle systems.

Every scheme advances a `PointState` by one step h in place:

- FORWARD_EULER:    p += h·v(t);  v += h·a(t)
- SYMPLECTIC_EULER: v += h·a(t);  p += h·v(t+h)
- BACKWARD_EULER:   symplectic predictor, forces at the prediction, corrector
- LEAPFROG:         position-first and velocity-first updates on alternating calls
- MIDPOINT:         RK2, derivative evaluated at the half step
- VERLET:           p(t+h) = 2p(t) - p(t-h) + h²·a(t), symplectic bootstrap
- RK4:              classic 4th order Runge-Kutta on (p, v)

a = (f - d·v) / m with linear damping d. Forces are produced by an
`update_forces(state)` callback that overwrites `state.force`, so schemes
needing several force evaluations per step call it at intermediate states.
Fixed points never move and their velocity is forced to zero.
"""

import enum
import numpy as np
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..core.point import PointState


ForceFunction = Callable[[PointState], None]


class IntegrationScheme(enum.Enum):
    """Available integration schemes."""
    FORWARD_EULER = "forward_euler"
    SYMPLECTIC_EULER = "symplectic_euler"
    BACKWARD_EULER = "backward_euler"
    LEAPFROG = "leapfrog"
    MIDPOINT = "midpoint"
    VERLET = "verlet"
    RK4 = "rk4"


@dataclass
class IntegrationContext:
    """History a scheme carries between calls.

    Attributes:
        counter: number of steps taken (leapfrog parity, Verlet bootstrap)
        previous: positions at t - h (Verlet only)
    """
    counter: int = 0
    previous: Optional[np.ndarray] = None

    def reset(self):
        self.counter = 0
        self.previous = None

    def copy(self) -> "IntegrationContext":
        previous = None if self.previous is None else self.previous.copy()
        return IntegrationContext(self.counter, previous)

    def assign(self, other: "IntegrationContext"):
        """Restore the history saved by `copy`."""
        self.counter = other.counter
        self.previous = other.previous


# ───────────────── Helpers ─────────────────


def _drift(state: PointState, h: float, velocity: Optional[np.ndarray] = None):
    """p += h·v on free points."""
    v = state.velocity if velocity is None else velocity
    free = state.free
    state.position[free] += h * v[free]


def _kick(state: PointState, h: float, acc: Optional[np.ndarray] = None):
    """v += h·a on free points; fixed velocity forced to zero."""
    if acc is None:
        acc = state.acceleration()
    state.velocity += h * acc
    state.velocity[state.fixed] = 0.0


# ───────────────── Schemes ─────────────────


def forward_euler(state: PointState, h: float, update_forces: ForceFunction,
                  context: IntegrationContext):
    update_forces(state)
    acc = state.acceleration()
    # positions use the velocity at t
    _drift(state, h)
    _kick(state, h, acc)
    context.counter += 1


def symplectic_euler(state: PointState, h: float, update_forces: ForceFunction,
                     context: IntegrationContext):
    update_forces(state)
    _kick(state, h)
    # positions use the velocity at t + h
    _drift(state, h)
    context.counter += 1


def backward_euler(state: PointState, h: float, update_forces: ForceFunction,
                   context: IntegrationContext):
    """Implicit Euler approximated by one predictor-corrector pass."""
    initial = state.copy()

    # predictor: symplectic Euler
    update_forces(state)
    _kick(state, h)
    _drift(state, h)

    # corrector: forces at the predicted state, applied to the initial state
    update_forces(state)
    acc = state.acceleration()
    state.velocity[...] = initial.velocity + h * acc
    state.velocity[state.fixed] = 0.0
    state.position[...] = initial.position
    _drift(state, h)
    context.counter += 1


def leapfrog(state: PointState, h: float, update_forces: ForceFunction,
             context: IntegrationContext):
    """Alternate drift-kick and kick-drift on successive calls.

    Two consecutive calls compose into one Störmer-Verlet step of size 2h.
    Every call updates both position and velocity; the classic split where
    one call only drifts and the next only kicks would leave velocity-only
    calls with p(t+h) = p(t), which breaks free motion p += h·v.
    """
    if context.counter % 2 == 0:
        _drift(state, h)
        update_forces(state)
        _kick(state, h)
    else:
        update_forces(state)
        _kick(state, h)
        _drift(state, h)
    context.counter += 1


def midpoint(state: PointState, h: float, update_forces: ForceFunction,
             context: IntegrationContext):
    initial = state.copy()

    update_forces(state)
    acc0 = state.acceleration()

    # half step predictor
    _drift(state, 0.5 * h)
    _kick(state, 0.5 * h, acc0)
    v_half = state.velocity.copy()

    update_forces(state)
    acc_half = state.acceleration()

    # full step from the initial state with the half-step derivative
    state.position[...] = initial.position
    state.velocity[...] = initial.velocity
    _drift(state, h, v_half)
    _kick(state, h, acc_half)
    context.counter += 1


def verlet(state: PointState, h: float, update_forces: ForceFunction,
           context: IntegrationContext):
    """Position Verlet; the first call bootstraps with symplectic Euler."""
    if context.previous is None:
        context.previous = state.position.copy()
        update_forces(state)
        _kick(state, h)
        _drift(state, h)
        context.counter += 1
        return

    update_forces(state)
    acc = state.acceleration()
    free = state.free

    current = state.position.copy()
    new = current.copy()
    new[free] = 2.0 * current[free] - context.previous[free] + h * h * acc[free]

    state.velocity[...] = (new - current) / h
    state.velocity[state.fixed] = 0.0
    state.position[...] = new
    context.previous = current
    context.counter += 1


def rk4(state: PointState, h: float, update_forces: ForceFunction,
        context: IntegrationContext):
    p0 = state.position.copy()
    v0 = state.velocity.copy()
    fixed = state.fixed

    def derivative(p: np.ndarray, v: np.ndarray):
        state.position[...] = p
        state.velocity[...] = v
        update_forces(state)
        dp = v.copy()
        dp[fixed] = 0.0
        return dp, state.acceleration()

    k1p, k1v = derivative(p0, v0)
    k2p, k2v = derivative(p0 + 0.5 * h * k1p, v0 + 0.5 * h * k1v)
    k3p, k3v = derivative(p0 + 0.5 * h * k2p, v0 + 0.5 * h * k2v)
    k4p, k4v = derivative(p0 + h * k3p, v0 + h * k3v)

    state.position[...] = p0 + (h / 6.0) * (k1p + 2.0 * k2p + 2.0 * k3p + k4p)
    state.velocity[...] = v0 + (h / 6.0) * (k1v + 2.0 * k2v + 2.0 * k3v + k4v)
    state.position[fixed] = p0[fixed]
    state.velocity[fixed] = 0.0
    context.counter += 1


SCHEMES: Dict[IntegrationScheme, Callable] = {
    IntegrationScheme.FORWARD_EULER: forward_euler,
    IntegrationScheme.SYMPLECTIC_EULER: symplectic_euler,
    IntegrationScheme.BACKWARD_EULER: backward_euler,
    IntegrationScheme.LEAPFROG: leapfrog,
    IntegrationScheme.MIDPOINT: midpoint,
    IntegrationScheme.VERLET: verlet,
    IntegrationScheme.RK4: rk4,
}


def integrate(
    scheme: IntegrationScheme,
    state: PointState,
    h: float,
    update_forces: ForceFunction,
    context: IntegrationContext,
):
    """Advance `state` by one step of size h with the given scheme."""
    SCHEMES[IntegrationScheme(scheme)](state, h, update_forces, context)
