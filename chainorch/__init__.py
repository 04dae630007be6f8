"""
chainorch - Contract deployment and reconciliation engine.

Deploys a dependency graph of contracts, then drives every configuration
step, the name -> address registry and the debt snapshot to their desired
state. Every step is idempotent; writes the account may not make are queued
as owner actions.
"""

__version__ = "0.1.0"


__all__ = ["ChainorchConfig", "load_config", "get_chainorch_home"]

from .config import ChainorchConfig, load_config, get_chainorch_home
