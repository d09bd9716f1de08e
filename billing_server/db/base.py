"""Import every model so ``Base.metadata`` knows all tables.

Used by Alembic, the test suite and scripts that call ``create_all``.
"""

from billing_server.db.base_class import Base  # noqa: F401
from billing_server.models.user import User  # noqa: F401
from billing_server.models.payment import Payment  # noqa: F401
from billing_server.models.usage_limit import UsageLimit  # noqa: F401
from billing_server.models.notification import Notification  # noqa: F401
from billing_server.models.gateway_event import GatewayEvent  # noqa: F401
