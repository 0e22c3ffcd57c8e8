"""Organization and membership models."""
from __future__ import annotations

import enum

from spendflow import db


class MemberRole(enum.Enum):
    EMPLOYEE = "employee"
    MANAGER = "manager"
    FINANCE = "finance"
    ADMIN = "admin"


class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
    currency_code = db.Column(db.String(10), nullable=False, default="USD")
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)

    members = db.relationship(
        "OrganizationMember",
        back_populates="organization",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    workflows = db.relationship(
        "ApprovalWorkflow",
        back_populates="organization",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "currency_code": self.currency_code,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Organization {self.name}>"


class OrganizationMember(db.Model):
    """A user's membership in an organization.

    ``manager_id`` points at the manager's user id; the manager only counts
    while they hold an active membership in the same organization.
    """

    __tablename__ = "organization_members"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "user_id", name="uq_member_org_user"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    role = db.Column(db.Enum(MemberRole, name="member_role"), nullable=False, default=MemberRole.EMPLOYEE)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    department = db.Column(db.String(120), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)

    organization = db.relationship("Organization", back_populates="members", lazy="joined")
    user = db.relationship(
        "User",
        foreign_keys=[user_id],
        back_populates="memberships",
        lazy="joined",
    )
    manager = db.relationship("User", foreign_keys=[manager_id], lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "role": self.role.value if self.role else None,
            "manager_id": self.manager_id,
            "department": self.department,
            "is_active": self.is_active,
        }

    def __repr__(self) -> str:
        return (
            f"<OrganizationMember org={self.organization_id} user={self.user_id} "
            f"role={self.role.value if self.role else None}>"
        )
