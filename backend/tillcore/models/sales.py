from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Sale(db.Model):
    """
    Persisted Transaction (reference Sales Ledger).

    WHY: The engine hands over frozen Transactions; this table keeps them so
    shift reports can read a window back. Totals are stored as computed at
    finalize time and are never recomputed from lines.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("receipt_number", name="uq_sales_receipt_number"),
        # At most one persisted sale per settlement attempt
        db.UniqueConstraint("settlement_id", name="uq_sales_settlement_id"),
        db.Index("ix_sales_status_created", "status", "created_at"),
    )

    id = db.Column(db.String(32), primary_key=True)
    receipt_number = db.Column(db.String(64), nullable=False)
    settlement_id = db.Column(db.String(32), nullable=True)

    # draft, completed, voided, refunded
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    created_at = db.Column(db.DateTime, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, nullable=True)

    customer_id = db.Column(db.String(64), nullable=True, index=True)
    primary_method = db.Column(db.String(32), nullable=True)  # cash, card, ..., split
    notes = db.Column(db.Text, nullable=True)

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_total_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_total_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_given_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "SaleLine", backref="sale", lazy=True, order_by="SaleLine.position",
        cascade="all, delete-orphan",
    )
    payments = db.relationship(
        "SalePayment", backref="sale", lazy=True, order_by="SalePayment.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "settlement_id": self.settlement_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "customer_id": self.customer_id,
            "primary_method": self.primary_method,
            "notes": self.notes,
            "subtotal_cents": self.subtotal_cents,
            "discount_total_cents": self.discount_total_cents,
            "tax_total_cents": self.tax_total_cents,
            "grand_total_cents": self.grand_total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "change_given_cents": self.change_given_cents,
            "lines": [line.to_dict() for line in self.lines],
            "payments": [payment.to_dict() for payment in self.payments],
        }


class SaleLine(db.Model):
    """One line of a sale with its allocated discount and tax."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.String(32), db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=True)

    # Exact rational quantity, e.g. "2" or "3/2"
    quantity = db.Column(db.String(32), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    original_tax_cents = db.Column(db.Integer, nullable=False, default=0)
    gross_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "original_tax_cents": self.original_tax_cents,
            "gross_cents": self.gross_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
        }


class SalePayment(db.Model):
    """
    Tender recorded against a sale.

    Split payments are several rows on one sale; change is tracked on the
    sale, not per tender.
    """
    __tablename__ = "sale_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.String(32), db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    method = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {"method": self.method, "amount_cents": self.amount_cents}
