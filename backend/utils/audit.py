import logging

from sqlalchemy.orm import Session
from models.log import Log

logger = logging.getLogger(__name__)


def write_log(db: Session, *, user_id, action, resource, resource_id=None, status="SUCCESS", ip=None, meta=None):
    """Append an audit entry in its own commit.

    Called after the stock change has been committed or rolled back, so FAIL
    entries survive the rollback of the operation they describe.
    """
    entry = Log(user_id=user_id, action=action, resource=resource, resource_id=resource_id,
                status=status, ip=ip, meta=meta or {})
    db.add(entry)
    db.commit()
    logger.info("audit %s %s/%s status=%s user=%s", action, resource, resource_id, status, user_id)
    return entry
