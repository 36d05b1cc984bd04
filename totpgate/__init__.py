"""
TOTPGATE - Time-based one-time password MFA engine.

This package provides the core of a TOTP second factor: enrollment secrets with
provenance checking, challenge issuance bound to a timestep window, response
validation with anti-replay and session binding, and the stores that hold the
shared challenge ledger.
"""

__version__ = "0.1.0"
__author__ = "TOTPGATE Team"
