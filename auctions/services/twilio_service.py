"""
Outbound SMS for marketplace notifications.

Credentials and the sender number come from Django settings
(``TWILIO_ACCOUNT_SID``, ``TWILIO_AUTH_TOKEN``, ``TWILIO_FROM_NUMBER``).
Recipient numbers are stored as users type them and converted to E.164
just before sending.
"""
import logging

import phonenumbers
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from phonenumbers import PhoneNumberFormat
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

logger = logging.getLogger(__name__)

# Twilio splits longer bodies into segments and rejects anything past this
MAX_BODY_LENGTH = 1600


def get_twilio_client():
    account_sid = getattr(settings, 'TWILIO_ACCOUNT_SID', None)
    auth_token = getattr(settings, 'TWILIO_AUTH_TOKEN', None)
    if not account_sid or not auth_token:
        raise ImproperlyConfigured("TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN must be set to send SMS.")
    return Client(account_sid, auth_token)


def to_e164(phone_number, region=None):
    """
    Convert a user-entered phone number to E.164.

    Args:
        phone_number: Number as stored on the user, e.g. "(650) 253-0000"
        region: Region assumed for numbers without a country code.
            Defaults to ``TWILIO_DEFAULT_REGION``.

    Returns:
        The number in E.164 form, e.g. "+16502530000"

    Raises:
        ValueError: If the number cannot be parsed or is not a real number
    """
    region = region or getattr(settings, 'TWILIO_DEFAULT_REGION', 'US')
    try:
        parsed = phonenumbers.parse(phone_number, region)
    except phonenumbers.NumberParseException as e:
        raise ValueError(f"Unparseable phone number {phone_number!r}: {e}")

    if not phonenumbers.is_valid_number(parsed):
        raise ValueError(f"Not a valid phone number: {phone_number!r}")
    return phonenumbers.format_number(parsed, PhoneNumberFormat.E164)


def send_sms(phone_number, body):
    """
    Text ``body`` to ``phone_number`` and return the Twilio message SID.

    Raises ValueError for a bad recipient, ImproperlyConfigured when Twilio
    is not set up, and TwilioRestException when Twilio refuses the message.
    """
    from_number = getattr(settings, 'TWILIO_FROM_NUMBER', None)
    if not from_number:
        raise ImproperlyConfigured("TWILIO_FROM_NUMBER must be set to send SMS.")

    to_number = to_e164(phone_number)
    client = get_twilio_client()
    try:
        message = client.messages.create(
            to=to_number,
            from_=from_number,
            body=body[:MAX_BODY_LENGTH],
        )
    except TwilioRestException as e:
        logger.error(f"Twilio refused SMS to {to_number}: {e}")
        raise

    logger.info(f"SMS sent to {to_number}, sid: {message.sid}")
    return message.sid
