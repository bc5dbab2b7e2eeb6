"""
phil - bring up local MongoDB deployments.
"""

__version__ = "0.1.0"
