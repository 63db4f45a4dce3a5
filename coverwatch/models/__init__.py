"""Database models — re-exports all models.

Import from here:  from coverwatch.models import Alert, RenewalSchedule, ...
Or from submodules: from coverwatch.models.alerts import Alert
"""

from .base import Base  # noqa: F401

# Tenants & coverage
from .vendors import Organization, Policy, Vendor  # noqa: F401

# Renewal tracking
from .renewals import RenewalEmail, RenewalEvent, RenewalSchedule  # noqa: F401

# Alerts
from .alerts import NO_RULE, Alert  # noqa: F401

# Requirement rules & compliance cache
from .rules import RequirementRule, VendorComplianceCache  # noqa: F401
