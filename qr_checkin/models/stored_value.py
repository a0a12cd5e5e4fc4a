# models/stored_value.py
from sqlalchemy import Index

from qr_checkin.extensions import db
from .base import BaseModel


class StoredValue(BaseModel):
    """One whole-value entry of the station's key-value store."""

    __tablename__ = 'stored_value'

    key = db.Column(db.String(200), nullable=False)
    value = db.Column(db.Text, nullable=False)

    __table_args__ = (
        Index('uq_stored_value_key', 'key', unique=True),
    )

    @classmethod
    def get_value(cls, key, default=None):
        """Get the raw string stored under key."""
        entry = cls.query.filter_by(key=key).first()
        if entry:
            return entry.value
        return default

    @classmethod
    def set_value(cls, key, value):
        """Overwrite the value stored under key."""
        entry = cls.query.filter_by(key=key).first()
        if not entry:
            entry = cls(key=key, value=value)
            db.session.add(entry)
        else:
            entry.value = value

        db.session.commit()
        return entry

    @classmethod
    def remove_value(cls, key):
        """Delete the entry for key if present."""
        deleted = cls.query.filter_by(key=key).delete()
        db.session.commit()
        return deleted

    def __repr__(self):
        return f'<StoredValue {self.key}>'
