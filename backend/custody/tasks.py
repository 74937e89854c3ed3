import datetime
import smtplib
from datetime import timezone
from uuid import UUID

from celery import Celery
from celery.schedules import crontab
from celery.utils.log import get_task_logger
from sqlalchemy.orm import joinedload

from . import config, models, notify
from .database import SessionLocal
from .services import authorization_directory, waitlist

logger = get_task_logger(__name__)

celery_app = Celery("custody", broker=config.CELERY_BROKER_URL)
celery_app.conf.task_always_eager = (
    config.CELERY_BROKER_URL == "memory://" or config.is_testing()
)


def _deliver_email(to_email: str, subject: str, message: str) -> None:
    try:
        notify.send_email(to_email, subject, message)
    except (OSError, smtplib.SMTPException):
        logger.exception("email to %s failed", to_email)


@celery_app.task
def notify_leader_override(override_id: str):
    """Tell guardians and leaders that a child left through an emergency release."""

    db = SessionLocal()
    try:
        override = (
            db.query(models.LeaderCheckoutOverride)
            .options(
                joinedload(models.LeaderCheckoutOverride.check_in).joinedload(
                    models.ChildCheckIn.child
                ),
                joinedload(models.LeaderCheckoutOverride.leader),
            )
            .filter(models.LeaderCheckoutOverride.id == UUID(override_id))
            .first()
        )
        if override is None:
            return
        record = override.check_in
        child = record.child
        leader_name = override.leader.full_name or override.leader.email
        message = (
            f"{child.full_name} was released from {record.classroom} to "
            f"{override.pickup_person_name} by {leader_name}. Reason: {override.reason}"
        )

        guardians = (
            db.query(models.Guardian)
            .join(models.ChildGuardian, models.ChildGuardian.guardian_id == models.Guardian.id)
            .filter(models.ChildGuardian.child_id == child.id)
            .all()
        )
        for guardian in guardians:
            if guardian.email:
                _deliver_email(guardian.email, "Emergency release", message)
            if guardian.phone:
                notify.send_sms(guardian.phone, message)

        leaders = (
            db.query(models.User)
            .filter(
                models.User.role.in_(config.OVERRIDE_ROLES),
                models.User.is_active.is_(True),
            )
            .all()
        )
        meta = {
            "override_id": str(override.id),
            "check_in_id": str(record.id),
            "child_id": str(child.id),
            "classroom": record.classroom,
        }
        for leader in leaders:
            db.add(
                models.Notification(
                    user_id=leader.id,
                    message=message,
                    title="Emergency release",
                    category="custody",
                    priority="urgent",
                    meta=meta,
                )
            )
        db.commit()
        logger.info("override %s notified %d guardians", override_id, len(guardians))
    finally:
        db.close()


def _run_eager(task, *args):
    # the caller has already committed; a delivery failure must not undo its response
    try:
        task(*args)
    except Exception:
        logger.exception("eager task %s failed", task.name)


def enqueue_override_notification(override_id: str):
    if celery_app.conf.task_always_eager:
        _run_eager(notify_leader_override, override_id)
    else:
        notify_leader_override.delay(override_id)


@celery_app.task
def notify_waitlist(classroom: str):
    db = SessionLocal()
    try:
        entry = waitlist.notify_next_waiting(db, classroom, datetime.datetime.now(timezone.utc))
        return str(entry.id) if entry else None
    finally:
        db.close()


def enqueue_waitlist_notification(classroom: str):
    if celery_app.conf.task_always_eager:
        _run_eager(notify_waitlist, classroom)
    else:
        notify_waitlist.delay(classroom)


celery_app.conf.beat_schedule = {
    "expire-pickup-authorizations": {
        "task": "custody.tasks.expire_pickup_authorizations",
        "schedule": crontab(minute="*/15"),
    },
}


@celery_app.task
def expire_pickup_authorizations() -> int:
    db = SessionLocal()
    try:
        count = authorization_directory.expire_grants(db, datetime.datetime.now(timezone.utc))
        if count:
            logger.info("expired %d pickup authorizations", count)
        return count
    finally:
        db.close()
