"""
NVIDIA Cloud License Service API access.
"""

from .client import ClsClient
from .models import (
    ActiveLease,
    ActiveLeaseClient,
    LicensePool,
    LicenseServer,
    LicenseServerFeature,
    VirtualGroup,
)

__all__ = [
    "ActiveLease",
    "ActiveLeaseClient",
    "ClsClient",
    "LicensePool",
    "LicenseServer",
    "LicenseServerFeature",
    "VirtualGroup",
]
