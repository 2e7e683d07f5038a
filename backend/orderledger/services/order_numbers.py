# Overview: Service-layer allocation and parsing of human-readable order numbers.

from __future__ import annotations

import re
from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import OrderNumberSequence
from ..time_utils import date_stamp
from .concurrency import run_with_retry


ORDER_NUMBER_PATTERN = re.compile(r"^(?P<prefix>[A-Z]{2,8})-(?P<date>\d{8})-(?P<seq>\d{4,})$")


def _take_next(sequence_date: str) -> int | None:
    stmt = (
        update(OrderNumberSequence)
        .where(OrderNumberSequence.sequence_date == sequence_date)
        .values(next_number=OrderNumberSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    db.session.flush()
    current = (
        db.session.query(OrderNumberSequence.next_number)
        .filter_by(sequence_date=sequence_date)
        .scalar()
    )
    return current - 1


def next_order_number(now: datetime | None = None, prefix: str | None = None, pad: int = 4) -> str:
    """
    Atomically allocate the next order number for the day, e.g. MLA-20250123-0001.

    Runs and commits in its own short transaction, before the order itself
    is written; a number consumed by an order that then fails is skipped,
    never reused.
    """
    prefix = prefix or current_app.config.get("ORDER_NUMBER_PREFIX", "MLA")
    sequence_date = date_stamp(now)

    def _op() -> str:
        next_num = _take_next(sequence_date)
        if next_num is None:
            db.session.add(OrderNumberSequence(sequence_date=sequence_date, next_number=2))
            try:
                db.session.flush()
                next_num = 1
            except IntegrityError:
                # Another request created today's row first
                db.session.rollback()
                next_num = _take_next(sequence_date)
                if next_num is None:
                    raise
        db.session.commit()
        return f"{prefix}-{sequence_date}-{next_num:0{pad}d}"

    return run_with_retry(_op)


def is_valid_order_number(value: str | None) -> bool:
    if not value:
        return False
    match = ORDER_NUMBER_PATTERN.match(value)
    if not match:
        return False
    try:
        datetime.strptime(match.group("date"), "%Y%m%d")
    except ValueError:
        return False
    return int(match.group("seq")) > 0


def parse_order_number(value: str) -> dict:
    """
    Split an order number into its parts.

    Returns:
        {"prefix": "MLA", "date": date(2025, 1, 23), "sequence": 1}

    Raises:
        ValueError if the number is malformed
    """
    if not is_valid_order_number(value):
        raise ValueError(f"Invalid order number: {value!r}")
    match = ORDER_NUMBER_PATTERN.match(value)
    return {
        "prefix": match.group("prefix"),
        "date": datetime.strptime(match.group("date"), "%Y%m%d").date(),
        "sequence": int(match.group("seq")),
    }
