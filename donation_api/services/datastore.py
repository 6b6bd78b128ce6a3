"""Datastore service — the privileged, server-side handle on the donations tables.

The browser never talks to these tables directly. Handlers go through the
DonationStore returned by get_privileged_client(), which uses the server's own
database role (from DATABASE_URL), so row-level policies meant for browser
sessions do not apply.

Every write is one filtered statement followed by a commit. No transaction
spans two handler steps.
"""

import logging
import threading
import uuid

from flask import current_app
from sqlalchemy.dialects import postgresql, sqlite

from donation_api.config import ConfigError
from donation_api.extensions import db
from donation_api.models.campaign import Campaign
from donation_api.models.donation import Donation
from donation_api.models.project import Project

logger = logging.getLogger(__name__)

EXTENSION_KEY = "donation_store"

_client_lock = threading.Lock()

# Dialects with a native INSERT ... ON CONFLICT DO UPDATE.
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class DonationStore:
    """Campaign and donation reads/writes used by the payment handlers."""

    def __init__(self, session):
        self.session = session

    # ── Campaigns ──

    def find_campaign_by_slug(self, slug):
        return (
            Campaign.query
            .filter_by(slug=slug)
            .populate_existing()
            .first()
        )

    def find_project(self, project_id):
        return self.session.get(Project, project_id)

    def upsert_campaign(self, slug, title, goal_amount, currency):
        """Insert a campaign or refresh the one holding this slug.

        Conflict target is campaigns.slug, so two concurrent first donations
        to the same slug end up sharing one row. Returns the stored Campaign.
        """
        values = {
            "id": str(uuid.uuid4()),
            "slug": slug,
            "title": title,
            "goal_amount": goal_amount,
            "currency": currency,
            "active": True,
        }

        dialect = self.session.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)

        if insert is not None:
            stmt = insert(Campaign.__table__).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["slug"],
                set_={
                    "title": stmt.excluded.title,
                    "goal_amount": stmt.excluded.goal_amount,
                    "currency": stmt.excluded.currency,
                    "active": True,
                    "updated_at": db.func.now(),
                },
            )
            self.session.execute(stmt)
        else:
            campaign = Campaign.query.filter_by(slug=slug).first()
            if campaign is None:
                self.session.add(Campaign(**values))
            else:
                campaign.title = title
                campaign.goal_amount = goal_amount
                campaign.currency = currency
                campaign.active = True

        self.session.commit()
        return self.find_campaign_by_slug(slug)

    # ── Donations ──

    def insert_donation(self, **values):
        """Insert one donation row and return it (committed)."""
        donation = Donation(**values)
        self.session.add(donation)
        self.session.commit()
        return donation

    def find_donation(self, *filters):
        """Return the first donation matching any filter, tried in order.

        Each filter is a dict of column -> value. Filters that contain a None
        value are skipped, so callers can pass every correlation key they
        might have and let precedence decide.
        """
        for criteria in filters:
            if not criteria or any(v is None for v in criteria.values()):
                continue
            donation = (
                Donation.query
                .filter_by(**criteria)
                .populate_existing()
                .first()
            )
            if donation is not None:
                return donation
        return None

    def update_donations(self, filters, values):
        """UPDATE donations SET values WHERE filters, as a single statement.

        Returns the number of rows matched. An empty filter is refused so a
        missing correlation key can never rewrite the whole table.
        """
        if not filters:
            raise ValueError("update_donations requires at least one filter")

        count = (
            Donation.query
            .filter_by(**filters)
            .update(values, synchronize_session=False)
        )
        self.session.commit()
        logger.info(f"Updated {count} donation(s) where {filters}: {values}")
        return count

    def rollback(self):
        self.session.rollback()


def get_privileged_client():
    """Return the app's DonationStore, building it on first use.

    Raises ConfigError if the datastore URL is not configured. The store is
    memoized on the Flask app and lives as long as the process.
    """
    app = current_app._get_current_object()

    if not app.config.get("DATASTORE_URL_CONFIGURED"):
        raise ConfigError("Datastore credentials are missing. Set DATABASE_URL.")

    store = app.extensions.get(EXTENSION_KEY)
    if store is None:
        with _client_lock:
            store = app.extensions.get(EXTENSION_KEY)
            if store is None:
                store = DonationStore(db.session)
                app.extensions[EXTENSION_KEY] = store
                logger.info("Privileged datastore client initialised")
    return store
