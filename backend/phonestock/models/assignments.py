from __future__ import annotations

from ..extensions import db
from phonestock.time_utils import to_utc_z, to_iso_date


class DsrAssignment(db.Model):
    """
    A day's allocation of available phone units to one field agent (DSR).

    SNAPSHOT: Lines copy the unit data relevant to the assignment (IMEI,
    assigned/target price, outcome). They are not live references, so the
    record stays meaningful after the unit moves on.

    DERIVED: status and all totals are recomputed from the line outcomes
    on every persist (assignment_service.recalculate_totals):
    - ACTIVE: no line resolved
    - PARTIALLY_RETURNED: at least one line sold or returned, but not every line returned
    - FULLY_RETURNED: every line returned
    COMPLETED is a declared status that the derivation never produces.

    NUMBERING: ASG-YYYYMMDD-NNN with a random suffix. A collision surfaces as a
    unique-index conflict; it is not retried.
    """
    __tablename__ = "dsr_assignments"
    __table_args__ = (
        db.Index("ix_dsr_assignments_date_agent", "assignment_date", "agent_id"),
        db.Index("ix_dsr_assignments_status_date", "status", "assignment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    assignment_number = db.Column(db.String(32), nullable=False, unique=True)
    assignment_date = db.Column(db.Date, nullable=False)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False)

    agent_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # One assignment per schedule
    schedule_id = db.Column(db.Integer, db.ForeignKey("dsr_schedules.id"), nullable=True, unique=True)

    # ACTIVE, PARTIALLY_RETURNED, FULLY_RETURNED, COMPLETED
    status = db.Column(db.String(24), nullable=False, default="ACTIVE", index=True)

    # Derived totals
    total_units = db.Column(db.Integer, nullable=False, default=0)
    total_value_cents = db.Column(db.Integer, nullable=False, default=0)
    total_target_cents = db.Column(db.Integer, nullable=False, default=0)
    sold_units = db.Column(db.Integer, nullable=False, default=0)
    sold_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    returned_units = db.Column(db.Integer, nullable=False, default=0)
    profit_cents = db.Column(db.Integer, nullable=False, default=0)

    # Last return
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    return_notes = db.Column(db.Text, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    assigned_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    lines = db.relationship(
        "DsrAssignmentUnit",
        back_populates="assignment",
        order_by="DsrAssignmentUnit.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    agent = db.relationship("User", foreign_keys=[agent_id])
    schedule = db.relationship("DsrSchedule", foreign_keys=[schedule_id])

    @property
    def assigned_units(self) -> int:
        return sum(1 for line in self.lines if line.status == "ASSIGNED")

    def line_for(self, imei: str):
        for line in self.lines:
            if line.imei == imei:
                return line
        return None

    def __repr__(self) -> str:
        return f"<DsrAssignment {self.assignment_number} status={self.status}>"

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "assignment_number": self.assignment_number,
            "assignment_date": to_iso_date(self.assignment_date),
            "agent_id": self.agent_id,
            "schedule_id": self.schedule_id,
            "total_units": self.total_units,
            "assigned_units": self.assigned_units,
            "sold_units": self.sold_units,
            "returned_units": self.returned_units,
            "total_value_cents": self.total_value_cents,
            "sold_revenue_cents": self.sold_revenue_cents,
            "profit_cents": self.profit_cents,
            "status": self.status,
        }

    def to_dict(self) -> dict:
        data = self.to_summary()
        data.update({
            "assigned_at": to_utc_z(self.assigned_at),
            "total_target_cents": self.total_target_cents,
            "returned_at": to_utc_z(self.returned_at),
            "returned_by_user_id": self.returned_by_user_id,
            "return_notes": self.return_notes,
            "notes": self.notes,
            "assigned_by_user_id": self.assigned_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "lines": [line.to_dict() for line in self.lines],
        })
        return data


class DsrAssignmentUnit(db.Model):
    """
    Snapshot of one phone unit inside an assignment.

    Line status (ASSIGNED -> SOLD | RETURNED) is the per-assignment outcome.
    It is changed by compare-and-set so a unit cannot be resolved twice.
    """
    __tablename__ = "dsr_assignment_units"
    __table_args__ = (
        db.UniqueConstraint("assignment_id", "imei", name="uq_dsr_assignment_units_imei"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey("dsr_assignments.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    invoice_id = db.Column(db.Integer, db.ForeignKey("purchase_invoices.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    imei = db.Column(db.String(15), nullable=False, index=True)

    assigned_price_cents = db.Column(db.Integer, nullable=False)
    target_price_cents = db.Column(db.Integer, nullable=False)

    # ASSIGNED, SOLD, RETURNED
    status = db.Column(db.String(16), nullable=False, default="ASSIGNED")

    sold_price_cents = db.Column(db.Integer, nullable=True)
    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    return_notes = db.Column(db.Text, nullable=True)

    assignment = db.relationship("DsrAssignment", back_populates="lines")

    @property
    def profit_cents(self) -> int | None:
        if self.sold_price_cents is None:
            return None
        return self.sold_price_cents - self.assigned_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "imei": self.imei,
            "assigned_price_cents": self.assigned_price_cents,
            "target_price_cents": self.target_price_cents,
            "status": self.status,
            "sold_price_cents": self.sold_price_cents,
            "sold_at": to_utc_z(self.sold_at),
            "profit_cents": self.profit_cents,
            "returned_at": to_utc_z(self.returned_at),
            "return_notes": self.return_notes,
        }
