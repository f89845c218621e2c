"""Models module exporting all database models."""

from .athlete import Athlete, AthleteGuardian
from .booking import Booking, BookingStatus, DropInRefund, SourceType
from .catalog import EventStatus, EventTemplate, ScheduledEvent, SchedulingCategory
from .entitlement import (
    USABLE_MEMBERSHIP_STATUSES,
    EntitlementRule,
    Membership,
    MembershipStatus,
    MembershipType,
    Package,
    PackageStatus,
    PackageType,
    RuleScope,
)
from .idempotency import IdempotencyRecord
from .organization import Organization, RestrictionTag
from .waiver import SignatureType, Waiver, WaiverCheckType, WaiverSignature

__all__ = [
    # Organization
    "Organization",
    "RestrictionTag",

    # People
    "Athlete",
    "AthleteGuardian",

    # Catalog
    "SchedulingCategory",
    "EventTemplate",
    "ScheduledEvent",
    "EventStatus",

    # Entitlements
    "MembershipType",
    "Membership",
    "MembershipStatus",
    "USABLE_MEMBERSHIP_STATUSES",
    "PackageType",
    "Package",
    "PackageStatus",
    "EntitlementRule",
    "RuleScope",

    # Bookings
    "Booking",
    "BookingStatus",
    "SourceType",
    "DropInRefund",

    # Waivers
    "Waiver",
    "WaiverSignature",
    "WaiverCheckType",
    "SignatureType",

    # Idempotency
    "IdempotencyRecord",
]
