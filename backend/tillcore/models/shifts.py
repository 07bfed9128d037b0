from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Shift(db.Model):
    """
    Cashier shift (drawer session).

    WHY: A shift bounds the report window. X reports run against an open
    shift, Z reports once it is closed.

    DESIGN: One OPEN shift per user at a time (enforced in ledger_service).
    """
    __tablename__ = "shift_sessions"
    __table_args__ = (
        db.Index("ix_shift_sessions_user_status", "user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="open", index=True)  # open, closed

    starting_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    ending_cash_cents = db.Column(db.Integer, nullable=True)  # Set when closing

    opened_at = db.Column(db.DateTime, nullable=False, index=True)
    closed_at = db.Column(db.DateTime, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    movements = db.relationship(
        "CashMovementEntry", backref="shift", lazy=True, order_by="CashMovementEntry.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status,
            "starting_cash_cents": self.starting_cash_cents,
            "ending_cash_cents": self.ending_cash_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "notes": self.notes,
        }


class CashMovementEntry(db.Model):
    """
    Cash put into or taken out of the drawer outside of sales.

    EVENT TYPES:
    - pay_in: float top-up
    - pay_out: petty cash paid out
    - drop: cash moved to the safe
    """
    __tablename__ = "cash_movements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shift_sessions.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)

    occurred_at = db.Column(db.DateTime, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "type": self.movement_type,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }
