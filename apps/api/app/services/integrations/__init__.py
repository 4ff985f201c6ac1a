"""External collaborators (calendar, payments, messaging)."""

from dataclasses import dataclass

from app.services.integrations.base import (
    CalendarProvider,
    EmailProvider,
    PaymentProvider,
    SmsProvider,
)


@dataclass
class Providers:
    """Collaborators bound into request handlers and task handlers."""

    calendar: CalendarProvider
    payments: PaymentProvider
    sms: SmsProvider
    email: EmailProvider


def build_providers() -> Providers:
    """Production collaborators (real provider clients)."""
    from app.services.integrations.calendar import OrgCalendar
    from app.services.integrations.messaging import ResendEmail, TwilioSms
    from app.services.integrations.payments import StripePayments

    return Providers(
        calendar=OrgCalendar(),
        payments=StripePayments(),
        sms=TwilioSms(),
        email=ResendEmail(),
    )
