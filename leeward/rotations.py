import numpy as np

c = np.cos
s = np.sin

# All angles in this module are radians.
# Body frame is Forward-Right-Down, navigation frame is local NED and the
# mapping frame is a projected East-North-Up grid.


def R1(r):
    """
    Rotation matrix around the x-axis, r in radians
    """
    return np.array([[1,    0,     0],
                     [0, c(r), -s(r)],
                     [0, s(r),  c(r)]])


def R2(p):
    """
    Rotation matrix around the y-axis, p in radians
    """
    return np.array([[ c(p), 0, s(p)],
                     [    0, 1,    0],
                     [-s(p), 0, c(p)]])


def R3(y):
    """
    Rotation matrix around the z-axis, y in radians
    """
    return np.array([[c(y), -s(y), 0],
                     [s(y),  c(y), 0],
                     [   0,     0, 1]])


def D1(r):
    """
    Derivative of R1 with respect to r
    """
    return np.array([[0,     0,     0],
                     [0, -s(r), -c(r)],
                     [0,  c(r), -s(r)]])


def D2(p):
    """
    Derivative of R2 with respect to p
    """
    return np.array([[-s(p), 0,  c(p)],
                     [    0, 0,     0],
                     [-c(p), 0, -s(p)]])


def D3(y):
    """
    Derivative of R3 with respect to y
    """
    return np.array([[-s(y), -c(y), 0],
                     [ c(y), -s(y), 0],
                     [    0,     0, 0]])


def rotation_matrix(r, p, y):
    """
    Rotation matrix from body to local NED frame given roll (r), pitch (p), yaw (y) in radians.

    Aerospace ZYX convention: C = R3(y) @ R2(p) @ R1(r).
    """
    return R3(y) @ R2(p) @ R1(r)


def rotation_matrix_partials(r, p, y):
    """
    Partial derivatives of rotation_matrix with respect to r, p and y.
    """
    return (R3(y) @ R2(p) @ D1(r),
            R3(y) @ D2(p) @ R1(r),
            D3(y) @ R2(p) @ R1(r))


def T_enu_ned():
    """
    Rotation matrix from local level ENU to NED frame and vice versa
    """
    return np.array([[0, 1,  0],
                     [1, 0,  0],
                     [0, 0, -1]])


def validate_rotation_matrix(R: np.ndarray, tol: float = 1e-6) -> bool:
    """
    Validate that a matrix is a proper rotation matrix.

    A proper rotation matrix must:
        1. Be orthogonal: R @ R.T = I
        2. Have determinant = +1 (not a reflection)
    """
    if R.shape != (3, 3):
        return False

    if not np.allclose(R @ R.T, np.eye(3), atol=tol):
        return False

    return bool(np.isclose(np.linalg.det(R), 1.0, atol=tol))


def wrap_degrees(angle):
    """
    Wrap an angle in degrees into [-180, 180).
    """
    return (angle + 180.0) % 360.0 - 180.0
