import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string
from django.utils import timezone

from admin_site.models import SchoolModel
from .models import StudentPaymentModel, ProcessedEventModel

logger = logging.getLogger(__name__)


def _send_html_email(subject, to, template_name, context, text_content):
    html_content = render_to_string(template_name, context)
    email_message = EmailMultiAlternatives(
        subject=subject,
        body=text_content,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[to],
    )
    email_message.attach_alternative(html_content, "text/html")
    email_message.send()


@shared_task
def send_tuition_receipt_task(payment_id):
    """
    Emails a receipt to every parent of the student who has an email address.
    Returns the number of receipts sent.
    """
    try:
        payment = StudentPaymentModel.objects.select_related('student', 'school').get(pk=payment_id)
    except StudentPaymentModel.DoesNotExist:
        logger.error(f"Cannot send receipt, payment {payment_id} does not exist.")
        return 0

    student = payment.student
    student_name = f"{student.first_name} {student.last_name}"
    sent = 0
    for parent in student.parents.exclude(email__isnull=True).exclude(email=''):
        context = {
            'payment': payment,
            'parent': parent,
            'student_name': student_name,
            'school': payment.school,
            'history_url': f"{settings.BASE_URL}/dashboard/comptabilite",
        }
        text_content = (f"Bonjour {parent.first_name},\n\nNous confirmons la réception de votre paiement "
                        f"de {payment.amount} CFA pour les frais de scolarité de {student_name} "
                        f"(référence {payment.reference}).")
        try:
            _send_html_email(f"Reçu de paiement - {student_name}", parent.email,
                             'finance/emails/tuition_receipt.html', context, text_content)
            sent += 1
        except Exception as e:
            logger.error(f"Error sending tuition receipt to {parent.email}: {e}", exc_info=True)
    logger.info(f"Sent {sent} receipt(s) for payment {payment.reference}.")
    return sent


@shared_task
def send_subscription_confirmation_task(school_pk):
    """Emails the director that the subscription is active. Returns True when a mail went out."""
    school = SchoolModel.objects.filter(pk=school_pk).first()
    if school is None or not school.director_email:
        logger.info(f"No director email for school {school_pk}. Skipping subscription confirmation.")
        return False

    context = {'school': school, 'dashboard_url': f"{settings.BASE_URL}/dashboard"}
    end_date = school.subscription_end_date.strftime('%d/%m/%Y') if school.subscription_end_date else '-'
    text_content = (f"Votre abonnement au plan {school.subscription_plan} pour {school.name} est actif "
                    f"jusqu'au {end_date}.")
    try:
        _send_html_email(f"Confirmation d'abonnement - {school.subscription_plan} - {school.name}",
                         school.director_email, 'finance/emails/subscription_confirmation.html',
                         context, text_content)
    except Exception as e:
        logger.error(f"Error sending subscription email to {school.director_email}: {e}", exc_info=True)
        return False
    return True


@shared_task
def purge_processed_events_task():
    """
    Deletes idempotency markers older than the retention window. The window
    must stay longer than any provider's retry schedule; 0 keeps them forever.
    """
    retention_days = settings.PAYMENTS_PROCESSED_EVENT_RETENTION_DAYS
    if not retention_days or retention_days <= 0:
        return 0
    cutoff = timezone.now() - timedelta(days=retention_days)
    deleted, _ = ProcessedEventModel.objects.filter(processed_at__lt=cutoff).delete()
    logger.info(f"Purged {deleted} processed payment event marker(s) older than {retention_days} days.")
    return deleted
