"""
Stack Migration Services

Service layer for the HCP Terraform API, state conversion and migration lifecycle.
"""

from .tfe_client import TfeClient  # noqa: F401

__all__ = [
    "TfeClient",
]
