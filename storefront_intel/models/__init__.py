"""Database models — re-exports all models.

Import from here:  from storefront_intel.models import CustomerProfile, ...
Or from submodules: from storefront_intel.models.intelligence import BundleOffer
"""

from .base import Base  # noqa: F401

from .intelligence import (  # noqa: F401
    BehavioralEvent,
    BundleOffer,
    CustomerProfile,
    DeviceRecord,
)
