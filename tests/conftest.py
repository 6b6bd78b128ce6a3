"""Shared test fixtures for the donation API test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, fake PayPal creds)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: a seedable project, an active campaign and an inactive one
- signature_headers: the five PayPal transmission headers
- make_donation: factory for donation rows in a given state
- reload_donation: re-read a donation, bypassing the identity map
"""

from decimal import Decimal

import pytest

from donation_api import create_app
from donation_api.extensions import db as _db
from donation_api.models.campaign import Campaign
from donation_api.models.donation import Donation
from donation_api.models.project import Project


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def signature_headers():
    """Headers PayPal sends with every webhook delivery."""
    return {
        "PayPal-Auth-Algo": "SHA256withRSA",
        "PayPal-Cert-Url": "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-360caa42",
        "PayPal-Transmission-Id": "69cd13f0-d67a-11e5-baa3-778b53f4ae55",
        "PayPal-Transmission-Sig": "lmI95Jx3Y9nhR5SJWlHVIWpg4AgFk7n9bCHSRxbrd8A9zrhdu2rMyFrmz+Zjh3s3boXB07VXCXUZy/UFzUlnGJn0wDugt7FlSvdKeIJenLRemUxYCPVoEZzg9VFNqOa48gMkvF+XTpxBeUx/kWy6B5cp7GkT2+pOowfRK7OaynuxUoKW3JcMWw272VKjLTtTAShncla7tGF+55rxyt2KNZIIqxNMJ48RDZheGU5w1npu9dZHnPgTXB9iomeVRoD8O/jhRpnKsGrDschyNdkeh81BJJMH4Ctc6lnCCquoP/GzCzz33MMsNdid7vL/NIWaCsekQpW26FpWPi/tfj8nLA==",
        "PayPal-Transmission-Time": "2026-10-19T18:11:28Z",
    }


@pytest.fixture
def seed_data(app, db_session):
    """Seed a project (no campaign yet), an active campaign and an inactive one.

    Returns plain ids/slugs so tests can use them after the session expires.
    """
    project = Project(
        id="huni-kuin",
        title="Huni Kuin Escola Viva",
        goal_amount=Decimal("10000.00"),
    )
    _db.session.add(project)

    active = Campaign(
        slug="escola-yube",
        title="Escola Yube",
        goal_amount=Decimal("500.00"),
        currency="BRL",
        active=True,
    )
    _db.session.add(active)

    inactive = Campaign(
        slug="mutirao-2024",
        title="Mutirão 2024",
        goal_amount=Decimal("800.00"),
        currency="BRL",
        active=False,
    )
    _db.session.add(inactive)

    _db.session.commit()

    return {
        "project_id": project.id,
        "active_campaign_id": active.id,
        "active_slug": active.slug,
        "inactive_campaign_id": inactive.id,
        "inactive_slug": inactive.slug,
    }


@pytest.fixture
def make_donation(db_session, seed_data):
    """Factory: insert a donation on the active campaign and return its id."""

    def _make(**overrides):
        values = {
            "campaign_id": seed_data["active_campaign_id"],
            "project_id": seed_data["active_slug"],
            "amount": Decimal("50.00"),
            "currency": "BRL",
            "status": "pending",
            "donor_name": "Ana",
            "donor_email": "a@x.com",
        }
        values.update(overrides)
        donation = Donation(**values)
        _db.session.add(donation)
        _db.session.commit()
        return donation.id

    return _make


@pytest.fixture
def reload_donation(db_session):
    """Return a function that fetches a donation fresh from the database."""

    def _reload(donation_id):
        _db.session.expire_all()
        return _db.session.get(Donation, donation_id)

    return _reload
