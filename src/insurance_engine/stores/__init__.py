"""Persistence stores for applications, employees and rate tables."""

from insurance_engine.stores.applications import ApplicationStore
from insurance_engine.stores.base import (
    PersistenceError,
    RecordNotFoundError,
    StaleStateError,
)
from insurance_engine.stores.employees import EmployeeStore
from insurance_engine.stores.rate_tables import RateTableStore

__all__ = [
    "ApplicationStore",
    "EmployeeStore",
    "PersistenceError",
    "RateTableStore",
    "RecordNotFoundError",
    "StaleStateError",
]
