from itertools import combinations

import pytest

from mpcsum.errors import DuplicatePoint, InsufficientShares
from mpcsum.mpc_core import P, Share, add_shares, generate_shares, reconstruct_secret


@pytest.mark.parametrize("n,t", [(1, 1), (3, 2), (3, 3), (5, 3)])
def test_any_t_subset_reconstructs(n, t):
    secret = 123456789
    shares = generate_shares(secret, list(range(1, n + 1)), t)
    assert [s.point for s in shares] == list(range(1, n + 1))
    for subset in combinations(shares, t):
        assert reconstruct_secret(list(subset), t=t) == secret


def test_fewer_than_t_raises():
    shares = generate_shares(42, [1, 2, 3], 3)
    with pytest.raises(InsufficientShares) as exc:
        reconstruct_secret(shares[:2], t=3)
    assert exc.value.have == 2
    assert exc.value.need == 3


def test_empty_raises():
    with pytest.raises(InsufficientShares):
        reconstruct_secret([])


def test_identical_duplicates_collapse():
    shares = generate_shares(7, [1, 2, 3], 2)
    assert reconstruct_secret([shares[0], shares[0], shares[1]], t=2) == 7


def test_conflicting_duplicate_raises():
    shares = generate_shares(7, [1, 2, 3], 2)
    bad = Share(shares[0].point, (shares[0].value + 1) % P)
    with pytest.raises(DuplicatePoint):
        reconstruct_secret([shares[0], bad, shares[1]], t=2)


def test_t1_shares_are_the_secret():
    shares = generate_shares(99, [1, 2, 3], 1)
    assert all(s.value == 99 for s in shares)


def test_fresh_randomness_per_call():
    a = generate_shares(5, [1, 2, 3], 3)
    b = generate_shares(5, [1, 2, 3], 3)
    # two degree-2 polynomials colliding on three points is ~1/P
    assert a != b


@pytest.mark.parametrize(
    "points,t",
    [([], 1), ([0, 1], 1), ([1, 1], 1), ([1, 2], 0), ([1, 2], 3), ([P, 1], 1)],
)
def test_generate_rejects_bad_arguments(points, t):
    with pytest.raises(ValueError):
        generate_shares(1, points, t)


def test_homomorphic_sum():
    inputs = [5, 7, 9]
    points = [1, 2, 3]
    per_input = [generate_shares(x, points, 2) for x in inputs]
    sums = []
    for i in range(3):
        acc = per_input[0][i]
        for shares in per_input[1:]:
            acc = add_shares(acc, shares[i])
        sums.append(acc)
    for pair in combinations(sums, 2):
        assert reconstruct_secret(list(pair), t=2) == 21


def test_sum_wraps_modulo_p():
    points = [1, 2]
    a = generate_shares(P - 1, points, 2)
    b = generate_shares(2, points, 2)
    summed = [add_shares(x, y) for x, y in zip(a, b)]
    assert reconstruct_secret(summed, t=2) == 1


def test_add_shares_requires_same_point():
    with pytest.raises(ValueError):
        add_shares(Share(1, 1), Share(2, 1))
