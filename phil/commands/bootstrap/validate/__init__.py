"""
Validate module - Topology validation.

This module checks topologies before anything is started:
- Member counts per replica set and per sharded tier
- Unique addresses, data directories and set names
- Node roles and router config server strings
"""

from .validator import ensure_valid, validate_replica_set, validate_topology

__all__ = ['validate_topology', 'validate_replica_set', 'ensure_valid']
