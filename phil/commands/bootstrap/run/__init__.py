"""
Run module - Bootstrap execution functionality.

This module handles running a bootstrap end to end including:
- Collaborator construction
- Interrupt handling
- Reporting the cluster state and connection string
"""

from .run import build_options, run_bootstrap, run_bootstrap_sync, run_topology_file_sync

__all__ = ['build_options', 'run_bootstrap', 'run_bootstrap_sync', 'run_topology_file_sync']
