# mpc_core/field.py
from ..errors import DivisionByZero

P = 2**127 - 1  # Mersenne prime, identical on every peer


def reduce(a: int, p: int = P) -> int:
    return a % p


def add(a: int, b: int, p: int = P) -> int:
    return (a + b) % p


def sub(a: int, b: int, p: int = P) -> int:
    return (a - b) % p


def neg(a: int, p: int = P) -> int:
    return -a % p


def mul(a: int, b: int, p: int = P) -> int:
    return (a * b) % p


def inv(a: int, p: int = P) -> int:
    """Multiplicative inverse, Fermat's little theorem (p is prime)."""
    if a % p == 0:
        raise DivisionByZero("0 has no inverse")
    return pow(a % p, p - 2, p)


def field_sum(values, p: int = P) -> int:
    total = 0
    for v in values:
        total = (total + v) % p
    return total
