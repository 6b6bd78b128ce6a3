# Models package — import all models here so Alembic can discover them.

from donation_api.models.project import Project  # noqa: F401
from donation_api.models.campaign import Campaign  # noqa: F401
from donation_api.models.donation import Donation  # noqa: F401
from donation_api.models.webhook_event import WebhookEvent  # noqa: F401
