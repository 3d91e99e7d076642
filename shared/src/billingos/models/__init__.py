"""SQLAlchemy ORM models for BillingOS."""

from billingos.models.base import Base
from billingos.models.organization import Account, Organization, UserOrganization
from billingos.models.discount import Discount, DiscountProduct

__all__ = [
    "Base",
    "Account",
    "Organization",
    "UserOrganization",
    "Discount",
    "DiscountProduct",
]
