"""Small dense linear-algebra routines used by pose and axis estimation.

Everything here works on 2x2 / 3x3 / 9x9 problems, where closed forms and
Jacobi iteration are both exact enough and cheap:
- Dominant eigenvector of a 2x2 covariance (closed form)
- Rodrigues vector <-> rotation matrix
- Symmetric 3x3 eigendecomposition by cyclic Jacobi rotations
- 3x3 SVD built on that eigendecomposition, and the nearest rotation
- Normalised 4-point DLT homography
"""

from __future__ import annotations

import numpy as np

from pagedewarp.constants import (
    EIGEN_OFFDIAG_EPS,
    HOMOGRAPHY_SINGULAR_EPS,
    JACOBI_MAX_SWEEPS,
    RODRIGUES_EPS,
    SINGULAR_VALUE_EPS,
)
from pagedewarp.utils.exceptions import DegenerateGeometryError

# ── 2x2 principal axis ───────────────────────────────────────────────────────


def dominant_axis_2x2(cxx: float, cxy: float, cyy: float) -> np.ndarray:
    """Unit eigenvector of the larger eigenvalue of ``[[cxx, cxy], [cxy, cyy]]``.

    Uses ``lambda = (T + sqrt(T^2 - 4D)) / 2``. When the off-diagonal term is
    ~0 the matrix is already diagonal and the axis of larger variance is
    returned directly. The result always has a non-negative x component.
    """
    trace = cxx + cyy
    det = cxx * cyy - cxy * cxy
    lam = 0.5 * (trace + np.sqrt(max(0.0, trace * trace - 4.0 * det)))

    if abs(cxy) > EIGEN_OFFDIAG_EPS:
        # (cxx - lam) * x + cxy * y = 0
        theta = np.arctan2(-(cxx - lam), cxy)
        vec = np.array([np.cos(theta), np.sin(theta)])
    elif cxx >= cyy:
        vec = np.array([1.0, 0.0])
    else:
        vec = np.array([0.0, 1.0])

    if vec[0] < 0:
        vec = -vec
    return vec


# ── Rodrigues ────────────────────────────────────────────────────────────────


def rodrigues_to_matrix(rvec: np.ndarray) -> np.ndarray:
    """Rotation matrix for an axis-angle (Rodrigues) vector."""
    r = np.asarray(rvec, dtype=np.float64).reshape(3)
    theta = float(np.linalg.norm(r))
    if theta < RODRIGUES_EPS:
        return np.eye(3)
    kx, ky, kz = r / theta
    c, s = np.cos(theta), np.sin(theta)
    C = 1.0 - c
    return np.array(
        [
            [c + kx * kx * C, kx * ky * C - kz * s, kx * kz * C + ky * s],
            [ky * kx * C + kz * s, c + ky * ky * C, ky * kz * C - kx * s],
            [kz * kx * C - ky * s, kz * ky * C + kx * s, c + kz * kz * C],
        ]
    )


def matrix_to_rodrigues(rmat: np.ndarray) -> np.ndarray:
    """Axis-angle vector of a rotation matrix.

    Angle from the trace, axis from the skew-symmetric part. Angles close to
    pi, where the skew part vanishes, take the axis from ``(R + I) / 2``.
    """
    R = np.asarray(rmat, dtype=np.float64).reshape(3, 3)
    r = np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])
    s = float(np.linalg.norm(r)) * 0.5
    c = float(np.clip((np.trace(R) - 1.0) * 0.5, -1.0, 1.0))

    if s < 1e-5:
        if c > 0:
            return np.zeros(3)
        # theta ~ pi
        rx = np.sqrt(max((R[0, 0] + 1.0) * 0.5, 0.0))
        ry = np.sqrt(max((R[1, 1] + 1.0) * 0.5, 0.0)) * (-1.0 if R[0, 1] < 0 else 1.0)
        rz = np.sqrt(max((R[2, 2] + 1.0) * 0.5, 0.0)) * (-1.0 if R[0, 2] < 0 else 1.0)
        if abs(rx) < abs(ry) and abs(rx) < abs(rz) and (R[1, 2] > 0) != (ry * rz > 0):
            rz = -rz
        axis = np.array([rx, ry, rz])
        return axis / np.linalg.norm(axis) * np.arccos(c)

    theta = np.arctan2(s, c)
    return r * (theta / (2.0 * s))


# ── Symmetric eigendecomposition / SVD ───────────────────────────────────────


def jacobi_eigen_symmetric(
    matrix: np.ndarray, max_sweeps: int = JACOBI_MAX_SWEEPS
) -> tuple[np.ndarray, np.ndarray]:
    """Eigen-decompose a small symmetric matrix by cyclic Jacobi rotations.

    Returns:
        (eigenvalues, eigenvectors) sorted by descending eigenvalue; the
        eigenvectors are the columns of the second array.
    """
    A = np.array(matrix, dtype=np.float64)
    n = A.shape[0]
    V = np.eye(n)
    scale = max(float(np.abs(A).max()), 1e-300)

    for _ in range(max_sweeps):
        off = float(np.sum(np.triu(A, 1) ** 2))
        if off <= (1e-15 * scale) ** 2:
            break
        for p in range(n - 1):
            for q in range(p + 1, n):
                apq = A[p, q]
                if abs(apq) <= 1e-300:
                    continue
                theta = (A[q, q] - A[p, p]) / (2.0 * apq)
                t = np.sign(theta) / (abs(theta) + np.sqrt(theta * theta + 1.0))
                if theta == 0:
                    t = 1.0
                c = 1.0 / np.sqrt(t * t + 1.0)
                s = t * c
                J = np.eye(n)
                J[p, p] = c
                J[q, q] = c
                J[p, q] = s
                J[q, p] = -s
                A = J.T @ A @ J
                V = V @ J

    evals = np.diag(A).copy()
    order = np.argsort(evals)[::-1]
    return evals[order], V[:, order]


def _complete_basis(U: np.ndarray, good: np.ndarray) -> np.ndarray:
    """Fill the columns of ``U`` not flagged in ``good`` with an orthonormal complement."""
    cols = [U[:, i] for i in range(3) if good[i]]
    for i in range(3):
        if good[i]:
            continue
        if len(cols) == 2:
            vec = np.cross(cols[0], cols[1])
        else:
            vec = None
            for e in np.eye(3):
                cand = e - sum(np.dot(e, u) * u for u in cols)
                if np.linalg.norm(cand) > 1e-6:
                    vec = cand
                    break
        vec = vec / np.linalg.norm(vec)
        U[:, i] = vec
        cols.append(vec)
    return U


def svd3x3(matrix: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Singular value decomposition of a 3x3 matrix via Jacobi on ``A^T A``.

    Returns:
        (U, S, Vt) with ``A ~= U @ diag(S) @ Vt`` and S descending.
    """
    A = np.asarray(matrix, dtype=np.float64).reshape(3, 3)
    evals, V = jacobi_eigen_symmetric(A.T @ A)
    S = np.sqrt(np.maximum(evals, 0.0))

    U = np.zeros((3, 3))
    good = S > SINGULAR_VALUE_EPS * max(S[0], 1.0)
    for i in range(3):
        if good[i]:
            U[:, i] = A @ V[:, i] / S[i]
    if not good.all():
        U = _complete_basis(U, good)
    return U, S, V.T


def nearest_rotation(matrix: np.ndarray) -> np.ndarray:
    """Closest proper rotation to ``matrix`` in the Frobenius sense (``U @ Vt``)."""
    U, _, Vt = svd3x3(matrix)
    R = U @ Vt
    if np.linalg.det(R) < 0:
        U[:, 2] = -U[:, 2]
        R = U @ Vt
    return R


# ── Homography ───────────────────────────────────────────────────────────────


def _normalizing_transform(pts: np.ndarray) -> np.ndarray:
    """Similarity moving the centroid to the origin at mean distance sqrt(2)."""
    centroid = pts.mean(axis=0)
    mean_dist = float(np.mean(np.linalg.norm(pts - centroid, axis=1)))
    if mean_dist < HOMOGRAPHY_SINGULAR_EPS:
        raise DegenerateGeometryError("coincident points", details=f"spread={mean_dist:.3g}")
    s = np.sqrt(2.0) / mean_dist
    return np.array([[s, 0, -s * centroid[0]], [0, s, -s * centroid[1]], [0, 0, 1.0]])


def _check_general_position(pts: np.ndarray, name: str) -> None:
    """Reject point sets where any three points are (nearly) collinear."""
    scale = float(np.max(np.ptp(pts, axis=0)))
    if scale <= HOMOGRAPHY_SINGULAR_EPS:
        raise DegenerateGeometryError(f"{name} points coincide")
    n = len(pts)
    for i in range(n):
        for j in range(i + 1, n):
            for k in range(j + 1, n):
                d1 = pts[j] - pts[i]
                d2 = pts[k] - pts[i]
                area = abs(d1[0] * d2[1] - d1[1] * d2[0])
                if area <= 1e-9 * scale * scale:
                    raise DegenerateGeometryError(
                        f"{name} points are collinear", details=f"indices={i},{j},{k}"
                    )


def find_homography(src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """Homography mapping ``src`` plane points onto ``dst`` (normalised DLT).

    Args:
        src: (N, 2) source points, N >= 4.
        dst: (N, 2) destination points.

    Returns:
        3x3 matrix scaled so that ``H[2, 2] == 1`` when possible.

    Raises:
        DegenerateGeometryError: if the correspondences do not determine a
            unique, finite homography.
    """
    src = np.asarray(src, dtype=np.float64).reshape(-1, 2)
    dst = np.asarray(dst, dtype=np.float64).reshape(-1, 2)
    if len(src) != len(dst) or len(src) < 4:
        raise DegenerateGeometryError("homography needs at least 4 correspondences")
    if not (np.isfinite(src).all() and np.isfinite(dst).all()):
        raise DegenerateGeometryError("non-finite correspondences")

    _check_general_position(src, "object")
    _check_general_position(dst, "image")

    T_src = _normalizing_transform(src)
    T_dst = _normalizing_transform(dst)
    src_h = np.column_stack([src, np.ones(len(src))]) @ T_src.T
    dst_h = np.column_stack([dst, np.ones(len(dst))]) @ T_dst.T

    rows = []
    for (x, y, _), (u, v, _) in zip(src_h, dst_h):
        rows.append([-x, -y, -1, 0, 0, 0, u * x, u * y, u])
        rows.append([0, 0, 0, -x, -y, -1, v * x, v * y, v])
    A = np.array(rows)

    _, sing, vt = np.linalg.svd(A)
    if sing[7] <= HOMOGRAPHY_SINGULAR_EPS * sing[0]:
        raise DegenerateGeometryError(
            "homography system is rank deficient", details=f"sigma8={sing[7]:.3g}"
        )
    Hn = vt[-1].reshape(3, 3)
    H = np.linalg.inv(T_dst) @ Hn @ T_src

    if abs(H[2, 2]) > HOMOGRAPHY_SINGULAR_EPS:
        H = H / H[2, 2]
    if not np.isfinite(H).all():
        raise DegenerateGeometryError("non-finite homography")
    return H
