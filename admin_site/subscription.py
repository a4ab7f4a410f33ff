import logging

from dateutil.relativedelta import relativedelta

from payments.exceptions import SchoolNotFound
from .models import SchoolModel

logger = logging.getLogger(__name__)


def compute_new_end_date(current_end, duration_months, now):
    """
    A subscription still running is extended from its end date; a lapsed or
    missing one restarts from now. Months are calendar months, clamped to the
    last day of the target month.
    """
    base_date = current_end if current_end is not None and current_end > now else now
    return base_date + relativedelta(months=duration_months)


def extend_subscription(school_store, school_id, plan_name, duration_months, now):
    """
    Activates (or renews) the subscription of a school for duration_months.
    Must run inside the caller's transaction; the school row is locked while read.
    Returns the new end date.
    """
    school = school_store.get(school_id, lock=True)
    if school is None:
        logger.error(f"Cannot extend subscription, school {school_id} not found.")
        raise SchoolNotFound(school_id)

    current_end = school.subscription_end_date
    restarts = current_end is None or current_end <= now
    new_end_date = compute_new_end_date(current_end, duration_months, now)

    fields = {
        'subscription_plan': plan_name,
        'subscription_status': SchoolModel.SubscriptionStatus.ACTIVE,
        'subscription_end_date': new_end_date,
    }
    if restarts or school.subscription_start_date is None:
        fields['subscription_start_date'] = now

    school_store.update(school_id, fields)
    logger.info(f"Subscription of school {school_id} set to {plan_name} until {new_end_date.isoformat()} "
                f"({'restarted' if restarts else 'extended'} by {duration_months} month(s)).")
    return new_end_date
