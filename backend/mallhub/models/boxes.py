from __future__ import annotations

from ..extensions import db
from mallhub.time_utils import to_utc_z


class Box(db.Model):
    """
    Physical rental unit assignable to at most one shop at a time.

    INVARIANT: is_free=False <=> exactly one Shop has box_id == this box AND
    exactly one BoxHistory row for this box has end_at IS NULL.
    """
    __tablename__ = "boxes"
    __table_args__ = (
        db.UniqueConstraint("numero", name="uq_boxes_numero"),
        db.Index("ix_boxes_is_free", "is_free"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    numero = db.Column(db.String(32), nullable=False)
    surface = db.Column(db.Float, nullable=False)  # square metres
    rent_cents = db.Column(db.Integer, nullable=False)
    is_free = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Box id={self.id} numero={self.numero!r} free={self.is_free}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "numero": self.numero,
            "surface": self.surface,
            "rent_cents": self.rent_cents,
            "is_free": self.is_free,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class BoxHistory(db.Model):
    """
    Append-only occupation log. Assignment opens a row, release/transfer
    closes the open one (sets end_at). Rows are never deleted.
    """
    __tablename__ = "box_history"
    __table_args__ = (
        db.Index("ix_box_history_box_shop_end", "box_id", "shop_id", "end_at"),
        db.Index("ix_box_history_box_start", "box_id", "start_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    box_id = db.Column(db.Integer, db.ForeignKey("boxes.id"), nullable=False)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    start_at = db.Column(db.DateTime(timezone=True), nullable=False)
    end_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    box = db.relationship("Box", backref=db.backref("history", lazy=True))
    shop = db.relationship("Shop")

    @property
    def is_open(self) -> bool:
        return self.end_at is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "box_id": self.box_id,
            "shop_id": self.shop_id,
            "shop_name": self.shop.name if self.shop else None,
            "start_at": to_utc_z(self.start_at),
            "end_at": to_utc_z(self.end_at),
        }
