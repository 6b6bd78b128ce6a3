"""
Custom route decorators.

- json_errors: turns every exception escaping a payment view into a JSON
  {"error": message} response, so nothing crosses the handler boundary.
"""

import logging
from functools import wraps

from flask import jsonify
from werkzeug.exceptions import HTTPException

from donation_api.errors import PaymentFlowError

logger = logging.getLogger(__name__)


def json_errors(log_message):
    """Catch, log and serialize errors raised by the wrapped view."""

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except HTTPException:
                raise
            except PaymentFlowError as e:
                if e.status_code >= 500:
                    logger.error(f"{log_message}: {e.message}")
                else:
                    logger.warning(f"{log_message}: {e.message}")
                return jsonify(error=e.message), e.status_code
            except Exception as e:
                logger.error(f"{log_message}: {e}", exc_info=True)
                return jsonify(error=str(e) or "Internal error"), 500

        return decorated

    return decorator
