"""Campaign service — campaign resolution and public progress totals.

Responsible for:
- Resolving a donation's campaign from its slug, seeding one from the
  matching project on first use
- Computing confirmed totals per active campaign for the public progress bar
"""

import logging
from decimal import Decimal

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from donation_api.extensions import db
from donation_api.models.campaign import Campaign
from donation_api.models.donation import Donation

logger = logging.getLogger(__name__)


def get_or_create_campaign(store, slug, currency):
    """Return the active campaign for slug, creating it from a project if needed.

    An existing campaign is used as-is unless it is explicitly inactive. When
    there is no usable campaign, the project whose id equals the slug seeds a
    new one (upsert on slug). Returns None if no such project exists either.
    """
    existing = store.find_campaign_by_slug(slug)
    if existing is not None and existing.active is not False:
        return existing

    project = store.find_project(slug)
    if project is None:
        return None

    campaign = store.upsert_campaign(
        slug=slug,
        title=project.title or slug,
        goal_amount=project.goal_amount if project.goal_amount is not None else 0,
        currency=currency,
    )
    logger.info(f"Seeded campaign '{slug}' from project {project.id}")
    return campaign


# ──────────────────────────────────────────────
# Public progress
# ──────────────────────────────────────────────

def _progress_from_view():
    """Read precomputed totals from the campaign_progress view.

    Returns {campaign_id: (total, count)}, or None when the view is missing
    (e.g. SQLite in development).
    """
    try:
        rows = db.session.execute(
            text(
                "SELECT campaign_id, confirmed_total, confirmed_count "
                "FROM campaign_progress"
            )
        ).all()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.info(f"campaign_progress view unavailable, aggregating manually: {e}")
        return None

    return {
        row.campaign_id: (
            Decimal(str(row.confirmed_total or 0)),
            int(row.confirmed_count or 0),
        )
        for row in rows
    }


def _progress_from_donations():
    """Sum confirmed donations per campaign directly."""
    rows = (
        db.session.query(
            Donation.campaign_id,
            db.func.coalesce(db.func.sum(Donation.amount), 0),
            db.func.count(Donation.id),
        )
        .filter(Donation.campaign_id.isnot(None))
        .filter(Donation.status.in_(Donation.CONFIRMED_STATUSES))
        .group_by(Donation.campaign_id)
        .all()
    )
    return {
        campaign_id: (Decimal(str(total)), int(count))
        for campaign_id, total, count in rows
    }


def get_public_campaigns():
    """Return progress dicts for every active campaign."""
    campaigns = (
        Campaign.query
        .filter_by(active=True)
        .order_by(Campaign.created_at.asc())
        .all()
    )

    progress = _progress_from_view()
    if progress is None:
        progress = _progress_from_donations()

    payload = []
    for campaign in campaigns:
        total, count = progress.get(campaign.id, (Decimal("0"), 0))
        goal = Decimal(str(campaign.goal_amount or 0))
        ratio = min(total / goal, Decimal("1")) if goal > 0 else Decimal("0")
        payload.append({
            "id": campaign.id,
            "slug": campaign.slug,
            "title": campaign.title,
            "goal_amount": float(goal),
            "currency": campaign.currency,
            "confirmed_total": round(float(total), 2),
            "confirmed_count": count,
            "progress_ratio": round(float(ratio), 4),
        })
    return payload
