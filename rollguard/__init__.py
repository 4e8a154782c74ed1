"""
RollGuard: integrity engine for voter registration rolls.
"""

__version__ = "0.1.0"
