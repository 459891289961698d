# mpc_core/__init__.py
from .field import P
from .shamir import Share, generate_shares, reconstruct_secret, add_shares
