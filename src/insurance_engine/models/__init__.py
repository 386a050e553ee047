"""ORM models."""

from insurance_engine.models.application import Application
from insurance_engine.models.base import Base, JSONType, TimestampMixin, utcnow
from insurance_engine.models.employee import Employee
from insurance_engine.models.organization import ApplicationType, Organization
from insurance_engine.models.rate_table import InsuranceRateTable, PremiumRate

__all__ = [
    "Application",
    "ApplicationType",
    "Base",
    "Employee",
    "InsuranceRateTable",
    "JSONType",
    "Organization",
    "PremiumRate",
    "TimestampMixin",
    "utcnow",
]
