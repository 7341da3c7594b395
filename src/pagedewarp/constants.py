"""
PageDewarp - Numeric Constants

Simple numeric constants with ZERO internal imports to avoid circular dependencies.
Tunable thresholds live in config.py.
"""

from typing import Final

# ============================================================================
# Parameter Vector Layout
# ============================================================================

RVEC_IDX: Final[tuple[int, int]] = (0, 3)
TVEC_IDX: Final[tuple[int, int]] = (3, 6)
CUBIC_IDX: Final[tuple[int, int]] = (6, 8)

# Number of leading pose + curvature entries before the per-span offsets
PARAMS_HEADER_LEN: Final[int] = 8

# ============================================================================
# Surface Model
# ============================================================================

CUBIC_SLOPE_LIMIT: Final[float] = 0.5

# Projected coordinates are clamped to this magnitude
MAX_PROJECTED_COORD: Final[float] = 1e5

# ============================================================================
# Numerical Tolerances
# ============================================================================

EIGEN_OFFDIAG_EPS: Final[float] = 1e-9
RODRIGUES_EPS: Final[float] = 1e-8
HOMOGRAPHY_SINGULAR_EPS: Final[float] = 1e-12
SINGULAR_VALUE_EPS: Final[float] = 1e-6
DIRECTION_EPS: Final[float] = 1e-12

# ============================================================================
# Line Search (Brent / golden section)
# ============================================================================

GOLDEN_RATIO: Final[float] = 1.618034
CGOLD: Final[float] = 0.381966
BRENT_ZEPS: Final[float] = 1e-10
BRENT_MAX_ITER: Final[int] = 100
BRACKET_INITIAL_STEP: Final[float] = 0.1
BRACKET_MAX_ITER: Final[int] = 50

# ============================================================================
# Pose Refinement (Levenberg-Marquardt)
# ============================================================================

LM_INITIAL_DAMPING: Final[float] = 1e-2
LM_DAMPING_UP: Final[float] = 10.0
LM_DAMPING_DOWN: Final[float] = 0.1
LM_MAX_DAMPING: Final[float] = 1e10
LM_GRADIENT_STEP: Final[float] = 1e-6

# ============================================================================
# Jacobi Eigenvalue Iteration
# ============================================================================

JACOBI_MAX_SWEEPS: Final[int] = 50

# ============================================================================
# Page Dimension Optimisation
# ============================================================================

PAGE_DIMS_MAX_ITER: Final[int] = 100
PAGE_BOUNDARY_SAMPLES: Final[int] = 50
