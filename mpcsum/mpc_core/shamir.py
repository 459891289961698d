# mpc_core/shamir.py
import secrets
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from ..errors import DuplicatePoint, InsufficientShares
from . import field
from .field import P


@dataclass(frozen=True)
class Share:
    """One evaluation (point, value) of a sharing polynomial."""

    point: int
    value: int


def _eval_poly(coeffs: Sequence[int], x: int, p: int = P) -> int:
    """多项式求值 (Horner)"""
    result = 0
    for c in reversed(coeffs):
        result = (result * x + c) % p
    return result


def _random_coeffs(secret: int, t: int, p: int = P) -> List[int]:
    # fresh polynomial per call; reusing one across secrets leaks them
    return [secret % p] + [secrets.randbelow(p) for _ in range(t - 1)]


def generate_shares(secret: int, points: Sequence[int], t: int, p: int = P) -> List[Share]:
    """Shamir 秘密分享: split `secret` into one share per point, threshold `t`.

    The polynomial has degree t-1 and constant term `secret`; its other
    coefficients are drawn from the CSPRNG.
    """
    if not points:
        raise ValueError("need at least one evaluation point")
    reduced = [field.reduce(x, p) for x in points]
    if any(x == 0 for x in reduced):
        raise ValueError("evaluation points must be non-zero")
    if len(set(reduced)) != len(reduced):
        raise ValueError("evaluation points must be distinct")
    if not 1 <= t <= len(points):
        raise ValueError(f"invalid threshold: t={t}, n={len(points)}")

    coeffs = _random_coeffs(secret, t, p)
    return [Share(point=x, value=_eval_poly(coeffs, x, p)) for x in reduced]


def _distinct_points(shares: Iterable[Share], p: int = P) -> List[Share]:
    by_point: Dict[int, Share] = {}
    for s in shares:
        x = field.reduce(s.point, p)
        y = field.reduce(s.value, p)
        seen = by_point.get(x)
        if seen is None:
            by_point[x] = Share(x, y)
        elif seen.value != y:
            raise DuplicatePoint(x)
    return list(by_point.values())


def reconstruct_secret(shares: Iterable[Share], t: Optional[int] = None, p: int = P) -> int:
    """Lagrange 插值重建秘密 (evaluate the interpolated polynomial at x = 0).

    Identical duplicates are collapsed, conflicting ones raise DuplicatePoint.
    When `t` is given, exactly the first `t` distinct shares are used.
    """
    distinct = _distinct_points(shares, p)
    need = 1 if t is None else t
    if len(distinct) < need:
        raise InsufficientShares(len(distinct), need)
    if t is not None:
        distinct = distinct[:t]

    res = 0
    for j, sj in enumerate(distinct):
        num, den = 1, 1
        for m, sm in enumerate(distinct):
            if m == j:
                continue
            num = field.mul(num, field.neg(sm.point, p), p)           # (0 - xm)
            den = field.mul(den, field.sub(sj.point, sm.point, p), p)  # (xj - xm)
        lj = field.mul(num, field.inv(den, p), p)
        res = field.add(res, field.mul(sj.value, lj, p), p)
    return res


def add_shares(a: Share, b: Share, p: int = P) -> Share:
    """Pointwise sum of two shares; a share of the sum of both secrets."""
    if a.point % p != b.point % p:
        raise ValueError(f"cannot add shares at different points {a.point} and {b.point}")
    return Share(a.point % p, field.add(a.value, b.value, p))
