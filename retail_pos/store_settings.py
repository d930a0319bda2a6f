from __future__ import annotations
import logging

from sqlmodel import Session

from retail_pos.errors import ValidationError
from retail_pos.models import STORE_SETTINGS_ID, StoreSettings
from retail_pos.persistence import commit
from retail_pos.receipt import read_logo
from retail_pos.upi import is_valid_upi_id

logger = logging.getLogger(__name__)

_FIELDS = ("name", "address", "phone", "email", "gst", "upi_id", "logo", "bill_width", "bill_height")


def load_store_settings(session: Session) -> StoreSettings:
    st = session.get(StoreSettings, STORE_SETTINGS_ID)
    if not st:
        st = StoreSettings(id=STORE_SETTINGS_ID)
        session.add(st)
        commit(session)
        session.refresh(st)
    return st


def update_store_settings(session: Session, **fields) -> StoreSettings:
    fields = {k: v for k, v in fields.items() if k in _FIELDS and v is not None}
    upi_id = (fields.get("upi_id") or "").strip()
    if upi_id and not is_valid_upi_id(upi_id):
        raise ValidationError("Please enter a valid UPI ID (e.g., example@upi)")
    for k in ("bill_width", "bill_height"):
        if k in fields and float(fields[k]) <= 0:
            raise ValidationError(f"{k.replace('_', ' ')} must be greater than zero")
    if "name" in fields and not str(fields["name"]).strip():
        raise ValidationError("Store name is required")
    if fields.get("logo"):
        fields["logo"] = fields["logo"].strip()
        read_logo(fields["logo"])

    st = load_store_settings(session)
    for k, v in fields.items():
        setattr(st, k, v.strip() if isinstance(v, str) else v)
    session.add(st)
    commit(session)
    session.refresh(st)
    logger.info("Store settings updated: %s", ", ".join(sorted(fields)))
    return st
