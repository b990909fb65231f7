"""
Matrix primitives for the EKF.

Thin numpy wrappers with no hidden state. The inverse is closed-form and
only covers the innovation covariances the filter produces (1x1 for
depth/velocity, 3x3 for GPS).
"""

import numpy as np

from nav_core.errors import NumericalError

# Below this the innovation covariance is treated as singular
SINGULAR_DET_EPS = 1e-12


def identity(size: int) -> np.ndarray:
    return np.eye(size)


def zeros(rows: int, cols: int) -> np.ndarray:
    return np.zeros((rows, cols))


def multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Matrix product.

    Raises:
        ValueError: If the inner dimensions do not match
    """
    if a.shape[-1] != b.shape[0]:
        raise ValueError(
            f"Cannot multiply {a.shape} by {b.shape}: inner dimensions differ"
        )
    return a @ b


def add(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return a + b


def subtract(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return a - b


def transpose(m: np.ndarray) -> np.ndarray:
    return m.T


def determinant(m: np.ndarray) -> float:
    """Closed-form determinant of a 1x1 or 3x3 matrix."""
    if m.shape == (1, 1):
        return float(m[0, 0])
    if m.shape == (3, 3):
        return float(
            m[0, 0] * (m[1, 1] * m[2, 2] - m[1, 2] * m[2, 1])
            - m[0, 1] * (m[1, 0] * m[2, 2] - m[1, 2] * m[2, 0])
            + m[0, 2] * (m[1, 0] * m[2, 1] - m[1, 1] * m[2, 0])
        )
    raise ValueError(f"Closed-form determinant supports 1x1 and 3x3, got {m.shape}")


def inverse(m: np.ndarray) -> np.ndarray:
    """
    Closed-form inverse of a 1x1 or 3x3 matrix (cofactor / determinant).

    Raises:
        NumericalError: If |det| < SINGULAR_DET_EPS
        ValueError: For any other shape
    """
    det = determinant(m)
    if not np.isfinite(det) or abs(det) < SINGULAR_DET_EPS:
        raise NumericalError(f"Singular matrix (det={det:.3e})")

    if m.shape == (1, 1):
        return np.array([[1.0 / det]])

    inv_det = 1.0 / det
    return np.array([
        [
            (m[1, 1] * m[2, 2] - m[1, 2] * m[2, 1]) * inv_det,
            (m[0, 2] * m[2, 1] - m[0, 1] * m[2, 2]) * inv_det,
            (m[0, 1] * m[1, 2] - m[0, 2] * m[1, 1]) * inv_det,
        ],
        [
            (m[1, 2] * m[2, 0] - m[1, 0] * m[2, 2]) * inv_det,
            (m[0, 0] * m[2, 2] - m[0, 2] * m[2, 0]) * inv_det,
            (m[0, 2] * m[1, 0] - m[0, 0] * m[1, 2]) * inv_det,
        ],
        [
            (m[1, 0] * m[2, 1] - m[1, 1] * m[2, 0]) * inv_det,
            (m[0, 1] * m[2, 0] - m[0, 0] * m[2, 1]) * inv_det,
            (m[0, 0] * m[1, 1] - m[0, 1] * m[1, 0]) * inv_det,
        ],
    ])


def quaternion_to_rotation_matrix(qw: float, qx: float, qy: float, qz: float) -> np.ndarray:
    """Rotation matrix of a unit quaternion."""
    return np.array([
        [1 - 2 * qy * qy - 2 * qz * qz, 2 * qx * qy - 2 * qz * qw, 2 * qx * qz + 2 * qy * qw],
        [2 * qx * qy + 2 * qz * qw, 1 - 2 * qx * qx - 2 * qz * qz, 2 * qy * qz - 2 * qx * qw],
        [2 * qx * qz - 2 * qy * qw, 2 * qy * qz + 2 * qx * qw, 1 - 2 * qx * qx - 2 * qy * qy],
    ])
