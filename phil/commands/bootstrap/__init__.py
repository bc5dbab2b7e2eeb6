"""
Bootstrap command package - Bring up MongoDB deployments.

This package provides:
- bootstrap: CLI command group with run/validate/create-sample subcommands
- Bootstrapper: the tiered start-and-configure engine
- Topology validation and YAML topology files
- Dry-run plans
"""

from .bootstrap import bootstrap

__all__ = ['bootstrap']
