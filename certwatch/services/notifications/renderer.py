from datetime import date
from typing import Dict

SUBJECT_TEMPLATE = "Reminder: your {certification_name} certification {when}"

BODY_TEMPLATE = (
    "Hello,\n"
    "\n"
    "This is a reminder that your {certification_name} certification {when_long}.\n"
    "\n"
    "Certification: {certification_name}\n"
    "Expiration date: {expiration_date}\n"
    "Days remaining: {days_remaining}\n"
    "\n"
    "{call_to_action}\n"
)


def _describe_deadline(days_remaining: int, expiration_date: str) -> Dict[str, str]:
    if days_remaining < 0:
        return {
            "when": "has expired",
            "when_long": f"expired on {expiration_date}",
        }
    if days_remaining == 0:
        return {
            "when": "expires today",
            "when_long": f"expires today ({expiration_date})",
        }
    if days_remaining == 1:
        return {
            "when": "expires tomorrow",
            "when_long": f"expires tomorrow ({expiration_date})",
        }
    return {
        "when": f"expires in {days_remaining} days",
        "when_long": f"expires in {days_remaining} days, on {expiration_date}",
    }


def render_reminder_notification(
    certification_name: str, expiration_date: date, days_remaining: int
) -> Dict[str, str]:
    """
    Build the subject and body of a reminder email.

    Pure: the same input always renders the same message, and nothing is read
    from the clock or the database.
    """
    expiration = expiration_date.isoformat()
    deadline = _describe_deadline(days_remaining, expiration)

    if days_remaining < 0:
        call_to_action = "Please renew it as soon as possible and upload the new certificate."
    else:
        call_to_action = "Please renew it before it expires and upload the new certificate."

    data = {
        "certification_name": certification_name,
        "expiration_date": expiration,
        "days_remaining": days_remaining,
        "call_to_action": call_to_action,
        **deadline,
    }
    return {
        "subject": SUBJECT_TEMPLATE.format(**data),
        "body": BODY_TEMPLATE.format(**data),
    }
