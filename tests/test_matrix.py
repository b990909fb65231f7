"""
Unit tests for the EKF matrix primitives.
"""

import numpy as np
import pytest

from nav_core.errors import NumericalError
from nav_core.localization import matrix


class TestBasicOps:
    """Tests for shape handling and elementwise ops."""

    def test_identity_and_zeros(self):
        assert np.array_equal(matrix.identity(3), np.eye(3))
        assert matrix.zeros(2, 4).shape == (2, 4)

    def test_multiply(self):
        """Test product against numpy."""
        a = np.arange(6.0).reshape(2, 3)
        b = np.arange(12.0).reshape(3, 4)
        assert np.allclose(matrix.multiply(a, b), a @ b)

    def test_multiply_shape_mismatch(self):
        """Test inner dimension mismatch raises ValueError."""
        with pytest.raises(ValueError):
            matrix.multiply(np.zeros((2, 3)), np.zeros((2, 3)))

    def test_add_subtract_transpose(self):
        a = np.array([[1.0, 2.0], [3.0, 4.0]])
        b = np.ones((2, 2))

        assert np.array_equal(matrix.add(a, b), a + 1)
        assert np.array_equal(matrix.subtract(a, b), a - 1)
        assert np.array_equal(matrix.transpose(a), np.array([[1.0, 3.0], [2.0, 4.0]]))


class TestInverse:
    """Tests for the closed-form inverse."""

    def test_scalar_inverse(self):
        assert matrix.inverse(np.array([[4.0]]))[0, 0] == pytest.approx(0.25)

    def test_3x3_inverse_matches_numpy(self):
        """Test cofactor inverse against numpy.linalg."""
        m = np.array([
            [4.0, 1.0, 0.5],
            [1.0, 3.0, 0.2],
            [0.5, 0.2, 2.0],
        ])
        assert np.allclose(matrix.inverse(m), np.linalg.inv(m))
        assert np.allclose(matrix.inverse(m) @ m, np.eye(3))

    def test_determinant(self):
        m = np.diag([2.0, 3.0, 4.0])
        assert matrix.determinant(m) == pytest.approx(24.0)

    def test_singular_raises(self):
        """Test |det| below threshold raises NumericalError."""
        singular = np.array([
            [1.0, 2.0, 3.0],
            [2.0, 4.0, 6.0],
            [0.0, 1.0, 1.0],
        ])
        with pytest.raises(NumericalError):
            matrix.inverse(singular)

        with pytest.raises(NumericalError):
            matrix.inverse(np.array([[1e-13]]))

    def test_non_finite_raises(self):
        with pytest.raises(NumericalError):
            matrix.inverse(np.array([[np.nan]]))

    def test_unsupported_shape(self):
        """Test only 1x1 and 3x3 are supported."""
        with pytest.raises(ValueError):
            matrix.inverse(np.eye(2))


class TestQuaternionRotation:
    """Tests for quaternion -> rotation matrix."""

    def test_identity_quaternion(self):
        assert np.allclose(matrix.quaternion_to_rotation_matrix(1, 0, 0, 0), np.eye(3))

    def test_yaw_90_degrees(self):
        """Test 90 degree rotation about z maps x onto y."""
        half = np.sqrt(0.5)
        r = matrix.quaternion_to_rotation_matrix(half, 0.0, 0.0, half)

        assert np.allclose(r @ np.array([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0])

    def test_rotation_is_orthonormal(self):
        q = np.array([0.9, 0.1, -0.3, 0.2])
        q = q / np.linalg.norm(q)
        r = matrix.quaternion_to_rotation_matrix(*q)

        assert np.allclose(r @ r.T, np.eye(3))
        assert np.linalg.det(r) == pytest.approx(1.0)
