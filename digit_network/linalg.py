"""
linalg.py
~~~~~~~~~

Small linear-algebra toolkit used by the network.

Every product the network needs goes through :func:`dot`, which evaluates
the inner product with the law-of-cosines identity

    a . b = (|a|^2 + |b|^2 - |a - b|^2) / 2

instead of summing products directly. The two are equal mathematically but
round differently, so results agree with ``numpy.dot`` only to within a few
ulps. Pass ``dot=direct_dot`` to any primitive to get the plain summation.
"""

from typing import Callable

import numpy as np

DotProduct = Callable[[np.ndarray, np.ndarray], float]


def dot(lhs: np.ndarray, rhs: np.ndarray) -> float:
    """Inner product of two equal-length vectors via the norm identity."""
    difference = lhs - rhs
    lhs_length_squared = np.sum(lhs * lhs)
    rhs_length_squared = np.sum(rhs * rhs)
    difference_length_squared = np.sum(difference * difference)
    return float(
        (lhs_length_squared + rhs_length_squared - difference_length_squared) / 2.0
    )


def direct_dot(lhs: np.ndarray, rhs: np.ndarray) -> float:
    """Inner product as a plain sum of products."""
    return float(np.sum(lhs * rhs))


def mat_vec(matrix: np.ndarray, vector: np.ndarray,
            dot: DotProduct = dot) -> np.ndarray:
    """
    Multiply a matrix by a column vector.

    The column count of ``matrix`` must equal ``len(vector)``; this is not
    checked.

    Returns:
        Vector with one entry per row of ``matrix``
    """
    result = np.empty(matrix.shape[0])
    for i, row in enumerate(matrix):
        result[i] = dot(row, vector)
    return result


def mat_mat(lhs: np.ndarray, rhs: np.ndarray,
            dot: DotProduct = dot) -> np.ndarray:
    """
    Multiply two matrices.

    Each column of ``rhs`` is copied out into its own vector before being
    dotted with the rows of ``lhs``. Inner dimensions must match; this is
    not checked.
    """
    rows = lhs.shape[0]
    columns = rhs.shape[1]
    result = np.empty((rows, columns))
    for x in range(columns):
        column = np.array(rhs[:, x])
        for y in range(rows):
            result[y, x] = dot(lhs[y], column)
    return result


def outer(vector: np.ndarray, row_matrix: np.ndarray) -> np.ndarray:
    """
    Scale a single-row matrix by each element of ``vector``.

    Args:
        vector: Length-n vector
        row_matrix: Matrix of shape (1, m)

    Returns:
        Matrix of shape (n, m) with ``result[y, x] = vector[y] * row_matrix[0, x]``
    """
    rows = vector.shape[0]
    columns = row_matrix.shape[1]
    result = np.empty((rows, columns))
    for y in range(rows):
        result[y] = vector[y] * row_matrix[0]
    return result


def transpose(matrix: np.ndarray) -> np.ndarray:
    """Swap the row and column axes of a matrix."""
    rows, columns = matrix.shape
    result = np.empty((columns, rows))
    for y in range(columns):
        result[y] = matrix[:, y]
    return result


def as_column(vector: np.ndarray) -> np.ndarray:
    """View a vector as an (n, 1) matrix."""
    return np.asarray(vector, dtype=float).reshape(-1, 1)


def as_row(vector: np.ndarray) -> np.ndarray:
    """View a vector as a (1, n) matrix (the transpose of a column vector)."""
    return np.asarray(vector, dtype=float).reshape(1, -1)


def sigmoid(z):
    """The sigmoid function, applied element-wise."""
    return 1.0 / (1.0 + np.exp(-z))


def sigmoid_prime(z):
    """Derivative of the sigmoid function."""
    s = sigmoid(z)
    return s * (1.0 - s)


def cost(output, expected):
    """Squared error of one output unit."""
    return (output - expected) ** 2


def cost_derivative(output, expected):
    """
    Partial derivative of the cost with respect to the output activation.

    Taken as ``output - expected`` rather than ``2 * (output - expected)``;
    the factor of two is folded into the learning rate.
    """
    return output - expected
