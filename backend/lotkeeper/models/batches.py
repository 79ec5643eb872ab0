from __future__ import annotations

from ..extensions import db
from lotkeeper.time_utils import to_utc_z


def _decimal_str(value):
    return str(value) if value is not None else None


class VariantBatch(db.Model):
    """
    A received lot of one product variant.

    QUANTITY SEMANTICS:
    quantity is the total ever received for this lot. It is never decremented
    by orders. Remaining stock is always derived as
        quantity - SUM(variant_batch_allocations.quantity)
    by the availability service. Do not add a "remaining" column.

    LOT NUMBERS are unique per variant so that COA lookups by lot are not ambiguous
    within a variant.
    """
    __tablename__ = "variant_batches"
    __table_args__ = (
        db.UniqueConstraint("variant_id", "lot_number", name="uq_variant_batches_variant_lot"),
        db.Index("ix_variant_batches_variant_created", "variant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # External product variant id (commerce platform), consumed by id only
    variant_id = db.Column(db.String(64), nullable=False, index=True)
    lot_number = db.Column(db.String(128), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    coa_file_key = db.Column(db.String(512), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    invoice_url = db.Column(db.String(1024), nullable=True)
    lab_invoice_url = db.Column(db.String(1024), nullable=True)

    # Valuation only; never used for availability
    supplier_cost_per_vial = db.Column(db.Numeric(12, 4), nullable=True)
    testing_cost = db.Column(db.Numeric(12, 2), nullable=True)

    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    allocations = db.relationship(
        "VariantBatchAllocation",
        back_populates="batch",
        cascade="all, delete-orphan",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<VariantBatch id={self.id} variant_id={self.variant_id!r} lot={self.lot_number!r} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "lot_number": self.lot_number,
            "quantity": self.quantity,
            "coa_file_key": self.coa_file_key,
            "has_coa": bool(self.coa_file_key),
            "received_at": to_utc_z(self.received_at),
            "invoice_url": self.invoice_url,
            "lab_invoice_url": self.lab_invoice_url,
            "supplier_cost_per_vial": _decimal_str(self.supplier_cost_per_vial),
            "testing_cost": _decimal_str(self.testing_cost),
            "metadata": self.metadata_json,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class VariantBatchAllocation(db.Model):
    """
    Commitment of `quantity` units from one batch to one order line item.

    Rows are never updated in place: changes are delete + recreate.
    System-created rows carry metadata {"auto": true, "order_id": "<order id>"};
    the order id lets release find them even when the order no longer lists
    the line item, or is gone.
    """
    __tablename__ = "variant_batch_allocations"
    __table_args__ = (
        db.Index("ix_vba_batch", "variant_batch_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    variant_batch_id = db.Column(
        db.Integer,
        db.ForeignKey("variant_batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    # External order line item id, read-only link
    order_line_item_id = db.Column(db.String(64), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)

    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    batch = db.relationship("VariantBatch", back_populates="allocations")

    def __repr__(self) -> str:
        return (
            f"<VariantBatchAllocation id={self.id} batch={self.variant_batch_id} "
            f"line_item={self.order_line_item_id!r} qty={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_batch_id": self.variant_batch_id,
            "order_line_item_id": self.order_line_item_id,
            "quantity": self.quantity,
            "metadata": self.metadata_json,
            "created_at": to_utc_z(self.created_at),
        }
