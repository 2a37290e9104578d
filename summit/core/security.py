"""
Twilio webhook signature validation.

Twilio signs each request with HMAC-SHA1 over the full URL plus the sorted
POST parameters, keyed by the account auth token, and sends the result in the
X-Twilio-Signature header.

Controlled by TWILIO_AUTH_TOKEN and FF_ENFORCE_TWILIO_SIGNATURE:
  token set                 → signature must validate
  no token, enforce off     → warn and allow (local development)
  no token, enforce on      → reject
"""

import logging
from typing import Mapping

from twilio.request_validator import RequestValidator

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)


def verify_twilio_signature(url: str, params: Mapping[str, str], signature: str) -> bool:
    settings = get_settings()

    if not settings.twilio_auth_token:
        if get_flags().enforce_twilio_signature:
            logger.error("TWILIO_AUTH_TOKEN not set and signatures are enforced; rejecting request")
            return False
        logger.warning("TWILIO_AUTH_TOKEN not set, skipping signature validation")
        return True

    if not signature:
        logger.warning("Missing X-Twilio-Signature header")
        return False

    validator = RequestValidator(settings.twilio_auth_token)
    valid = validator.validate(url, dict(params), signature)
    if not valid:
        logger.warning("Invalid Twilio signature for %s", url)
    return valid
