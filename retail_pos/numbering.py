from __future__ import annotations
import logging
import random
from datetime import datetime
from typing import Optional

from sqlmodel import Session, select

from retail_pos import config
from retail_pos.errors import PersistenceError
from retail_pos.models import Bill

logger = logging.getLogger(__name__)

_rng = random.SystemRandom()


def candidate_bill_no(prefix: str, now: datetime) -> str:
    stamp = str(int(now.timestamp() * 1000))[-6:]
    return f"{prefix}-{stamp}-{_rng.randint(0, 9999):04d}"


def bill_no_exists(session: Session, bill_no: str) -> bool:
    return session.exec(select(Bill.id).where(Bill.bill_no == bill_no)).first() is not None


def next_bill_no(session: Session, prefix: Optional[str] = None, now: Optional[datetime] = None, attempts: Optional[int] = None) -> str:
    prefix = prefix or config.BILL_PREFIX
    attempts = attempts or config.BILL_NO_ATTEMPTS
    now = now or datetime.now()

    for _ in range(attempts):
        no = candidate_bill_no(prefix, now)
        if not bill_no_exists(session, no):
            return no
        logger.warning("Bill number %s already used, retrying", no)
    raise PersistenceError(f"Could not allocate a unique bill number after {attempts} attempts")
