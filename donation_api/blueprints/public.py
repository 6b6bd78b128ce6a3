"""Public blueprint — /api/public/*

Read-only data for the public site. No authentication.

Route Map:
  GET /api/public/campaigns — active campaigns with confirmed totals
"""

from flask import Blueprint, jsonify

from donation_api.decorators import json_errors
from donation_api.services.campaign_service import get_public_campaigns

public_bp = Blueprint("public", __name__, url_prefix="/api/public")


@public_bp.route("/campaigns", methods=["GET"], provide_automatic_options=False)
@json_errors("Error loading campaigns")
def campaigns():
    """List active campaigns with confirmed_total, confirmed_count and progress_ratio."""
    return jsonify(get_public_campaigns()), 200
