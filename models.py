import uuid
from datetime import datetime, timezone

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text

db = SQLAlchemy()

# column name -> JSON field name
MONEY_FIELDS = {
    "cash_on_hand": "cashOnHand",
    "savings": "savings",
    "stocks": "stocks",
    "real_estate": "realEstate",
    "debt": "debt",
}


def utcnow():
    return datetime.now(timezone.utc)


def new_user_id():
    return str(uuid.uuid4())


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=new_user_id)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    snapshots = db.relationship(
        "Snapshot", backref="owner", lazy=True, order_by="Snapshot.month_key"
    )

    def __repr__(self):
        return f"<User {self.email}>"


class Snapshot(db.Model):
    __tablename__ = "snapshots"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "month_key", name="uq_snapshot_owner_month"),
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    month_key = db.Column(db.String(7), nullable=False)
    cash_on_hand = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    savings = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    stocks = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    real_estate = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    debt = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    last_update = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self):
        data = {name: float(getattr(self, column) or 0) for column, name in MONEY_FIELDS.items()}
        stamp = self.last_update
        if stamp is not None and stamp.tzinfo is None:
            # SQLite hands back naive datetimes; everything is stored as UTC
            stamp = stamp.replace(tzinfo=timezone.utc)
        data["lastUpdate"] = stamp.isoformat() if stamp else None
        return data

    def __repr__(self):
        return f"<Snapshot {self.month_key} (User: {self.owner_id})>"


def init_db():
    """Create the tables; unique emails ignore case unless sign-up is case-sensitive."""
    db.create_all()
    if not current_app.config.get("EMAIL_CASE_SENSITIVE_SIGNUP"):
        with db.engine.begin() as conn:
            conn.execute(text(
                "CREATE UNIQUE INDEX IF NOT EXISTS uq_users_email_lower ON users (lower(email))"
            ))
