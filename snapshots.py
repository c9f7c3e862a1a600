"""
Monthly financial snapshots, one row per (owner, month).

Writes follow keyed-merge semantics: fields present in a request overwrite the
stored value, absent or null fields keep it. Each write runs in a single
transaction that covers the read-modify-write.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

import pandas as pd
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import NotFound, OwnerNotFound, PortfolioError, StoreError, ValidationError
from models import MONEY_FIELDS, Snapshot, User, db, utcnow

logger = logging.getLogger(__name__)

FIELD_COLUMNS = {name: column for column, name in MONEY_FIELDS.items()}
FIELD_COLUMNS["saving"] = "savings"
IGNORED_FIELDS = {"lastUpdate"}
MAX_AMOUNT = Decimal("1e16")


# ==============================
# INPUT PARSING
# ==============================
def normalize_month_key(value) -> str:
    """Return `YYYY-MM` for a month key or an ISO date inside that month."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Month key is required")
    value = value.strip()
    try:
        return datetime.strptime(value, "%Y-%m").strftime("%Y-%m")
    except ValueError:
        pass
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        return datetime.fromisoformat(text).strftime("%Y-%m")
    except ValueError:
        raise ValidationError(f"Invalid month key: {value}. Expected YYYY-MM")


def parse_amount(name, value) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise ValidationError(f"{name} must be a number")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{name} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{name} must be a finite number")
    # Numeric(18, 2) columns
    if amount.as_tuple().exponent < -2:
        raise ValidationError(f"{name} must have at most 2 decimal places")
    if abs(amount) >= MAX_AMOUNT:
        raise ValidationError(f"{name} is too large")
    return amount


def parse_timestamp(value) -> datetime:
    if value is None or value == "":
        return utcnow()
    if not isinstance(value, str):
        raise ValidationError("lastUpdate must be an ISO-8601 timestamp")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        stamp = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"Invalid lastUpdate: {value}")
    if stamp.tzinfo is None:
        return stamp.replace(tzinfo=timezone.utc)
    return stamp.astimezone(timezone.utc)


def clean_fields(fields) -> dict:
    """Map JSON money fields to column values, dropping null ones."""
    if not isinstance(fields, dict):
        raise ValidationError("Financial data for a month must be an object")
    values = {}
    for name, value in fields.items():
        if name in IGNORED_FIELDS:
            continue
        column = FIELD_COLUMNS.get(name)
        if column is None:
            raise ValidationError(f"Unknown field: {name}")
        if value is None:
            continue
        values[column] = parse_amount(name, value)
    return values


def _parse_months(monthly_assets) -> dict:
    if not isinstance(monthly_assets, dict):
        raise ValidationError("monthlyAssets must be an object keyed by month")
    parsed = {}
    for month_key, fields in monthly_assets.items():
        parsed.setdefault(normalize_month_key(month_key), {}).update(clean_fields(fields))
    return parsed


# ==============================
# WRITES
# ==============================
def _write(apply):
    # A concurrent insert of the same (owner, month) loses the unique
    # constraint; the second attempt finds that row and merges into it.
    for attempt in range(2):
        try:
            result = apply()
            db.session.commit()
            return result
        except PortfolioError:
            db.session.rollback()
            raise
        except IntegrityError:
            db.session.rollback()
            if attempt:
                logger.exception("Snapshot write kept conflicting")
                raise StoreError("Error saving financial data")
            logger.warning("Snapshot insert conflicted, retrying as merge")
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Error saving financial data")
            raise StoreError("Error saving financial data")


def _require_owner(owner_id):
    if db.session.get(User, owner_id) is None:
        raise OwnerNotFound()


def _merge(owner_id, month_key, values, stamp, create):
    stmt = (
        db.select(Snapshot)
        .filter_by(owner_id=owner_id, month_key=month_key)
        .with_for_update()
    )
    snapshot = db.session.execute(stmt).scalar_one_or_none()
    if snapshot is None:
        if not create:
            raise NotFound(f"No financial data found for {month_key}")
        snapshot = Snapshot(owner_id=owner_id, month_key=month_key)
        db.session.add(snapshot)
    for column, amount in values.items():
        setattr(snapshot, column, amount)
    snapshot.last_update = stamp
    db.session.flush()
    return snapshot


def _merge_months(owner_id, monthly_assets, last_update, create):
    _require_owner(owner_id)
    parsed = _parse_months(monthly_assets)
    stamp = parse_timestamp(last_update)

    def apply():
        return [_merge(owner_id, key, values, stamp, create) for key, values in parsed.items()]

    snapshots = _write(apply)
    logger.info("Wrote %d month(s) for user %s", len(snapshots), owner_id)
    return snapshots


def upsert_snapshot(owner_id, month_key, fields, last_update=None) -> Snapshot:
    return save_snapshots(owner_id, {month_key: fields}, last_update)[0]


def update_snapshot(owner_id, month_key, fields, last_update=None) -> Snapshot:
    """Like upsert_snapshot, but the month must already exist."""
    return update_snapshots(owner_id, {month_key: fields}, last_update)[0]


def save_snapshots(owner_id, monthly_assets, last_update=None):
    return _merge_months(owner_id, monthly_assets, last_update, create=True)


def update_snapshots(owner_id, monthly_assets, last_update=None):
    return _merge_months(owner_id, monthly_assets, last_update, create=False)


def replace_all(owner_id, snapshots_by_month, last_update=None) -> None:
    """Replace every snapshot the owner has with the supplied mapping."""
    _require_owner(owner_id)
    parsed = _parse_months(snapshots_by_month)
    stamp = parse_timestamp(last_update)

    def apply():
        db.session.execute(db.delete(Snapshot).where(Snapshot.owner_id == owner_id))
        for month_key, values in parsed.items():
            db.session.add(
                Snapshot(owner_id=owner_id, month_key=month_key, last_update=stamp, **values)
            )
        db.session.flush()

    _write(apply)
    logger.info("Replaced financial data for user %s with %d month(s)", owner_id, len(parsed))


# ==============================
# READS
# ==============================
def list_snapshots(owner_id):
    _require_owner(owner_id)
    stmt = db.select(Snapshot).filter_by(owner_id=owner_id).order_by(Snapshot.month_key)
    try:
        return db.session.execute(stmt).scalars().all()
    except SQLAlchemyError:
        logger.exception("Error loading financial data for user %s", owner_id)
        raise StoreError("Error loading financial data")


def snapshots_payload(snapshots) -> dict:
    if not snapshots:
        return {}
    monthly = {s.month_key: s.to_dict() for s in snapshots}
    return {
        "lastUpdate": max(data["lastUpdate"] for data in monthly.values()),
        "monthlyAssets": monthly,
    }


def summarize(owner_id) -> dict:
    """Net worth per month plus the latest month's composition."""
    snapshots = list_snapshots(owner_id)
    if not snapshots:
        return {"labels": [], "values": [], "latest": 0, "change": 0, "composition": {}}

    rows = [
        {"month": s.month_key, **{column: float(getattr(s, column) or 0) for column in MONEY_FIELDS}}
        for s in snapshots
    ]
    df = pd.DataFrame(rows).sort_values("month")
    df["net_worth"] = (
        df["cash_on_hand"] + df["savings"] + df["stocks"] + df["real_estate"] - df["debt"]
    )

    values = [round(float(v), 2) for v in df["net_worth"].tolist()]
    last = df.iloc[-1]
    return {
        "labels": df["month"].tolist(),
        "values": values,
        "latest": values[-1],
        "change": round(values[-1] - values[0], 2),
        "composition": {name: round(float(last[column]), 2) for column, name in MONEY_FIELDS.items()},
    }
