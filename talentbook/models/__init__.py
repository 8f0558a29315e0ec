# Import every model here so Alembic autogenerate sees the full schema.

from talentbook.models.user import User  # noqa: F401
from talentbook.models.billing import BillingCustomer, BillingSubscription  # noqa: F401
from talentbook.models.stripe_event import StripeEvent  # noqa: F401
from talentbook.models.order import StripeOrder  # noqa: F401
from talentbook.models.verification import VerificationEmail  # noqa: F401
from talentbook.models.audit import AuditEvent  # noqa: F401
