"""Approval delegation model."""
from __future__ import annotations

from datetime import date

from spendflow import db


class ApprovalDelegation(db.Model):
    """Time-bounded hand-over of one approver's authority to another user."""

    __tablename__ = "approval_delegations"
    __table_args__ = (
        db.CheckConstraint("end_date >= start_date", name="ck_valid_delegation_period"),
        db.CheckConstraint("delegator_id != delegate_id", name="ck_no_self_delegation"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    delegator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    delegate_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    reason = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)

    delegator = db.relationship("User", foreign_keys=[delegator_id], lazy="joined")
    delegate = db.relationship("User", foreign_keys=[delegate_id], lazy="joined")

    def covers(self, on: date) -> bool:
        return self.is_active and self.start_date <= on <= self.end_date

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "delegator_id": self.delegator_id,
            "delegate_id": self.delegate_id,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "is_active": self.is_active,
            "reason": self.reason,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<ApprovalDelegation {self.delegator_id}->{self.delegate_id} active={self.is_active}>"
