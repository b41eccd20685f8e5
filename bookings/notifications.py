import logging
from smtplib import SMTPException

from django.conf import settings
from django.core.mail import send_mail

from catalog.pricing import format_price

logger = logging.getLogger(__name__)


def send_booking_confirmation(booking):
    """E-mail the customer once a booking is paid. Returns False if the mail could not be sent."""
    service = booking.service
    lines = [
        f'Hi {booking.customer_name},',
        '',
        f'Your booking for {service.title} is confirmed.',
        f'Booking reference: #{booking.pk}',
        f'Amount paid: {format_price(booking.paid_amount, booking.currency)}',
    ]
    if booking.scheduled_date:
        lines.append(f'Preferred date: {booking.scheduled_date:%d %B %Y}')
    lines += ['', f'Thank you for choosing {settings.SITE_NAME}.']

    try:
        send_mail(
            subject=f'{settings.SITE_NAME} booking #{booking.pk} confirmed',
            message='\n'.join(lines),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[booking.customer_email],
        )
    except (SMTPException, OSError):
        logger.exception('Could not send confirmation e-mail for booking %s', booking.pk)
        return False
    return True
