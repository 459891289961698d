"""Threshold-secure distributed summation over Shamir secret sharing."""

__version__ = "0.1.0"
