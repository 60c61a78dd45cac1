from __future__ import annotations

from ..extensions import db
from settlement.time_utils import to_utc_z


class Branch(db.Model):
    """
    Physical store branch.

    WHY: Cash-up sessions, sales and laybye orders are scoped to the
    branch that took them. Each branch has its own cash drawer and at most
    one active cash-up session at a time.

    DESIGN: Branches are persistent (not deleted when inactive).
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_branches_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
