import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint

from extensions import db

BILL_STATUSES = ('pending', 'processing', 'completed', 'failed')


def _utcnow():
    return datetime.now(timezone.utc)


def _money(value):
    """Numeric columns come back as Decimal; JSON wants a float"""
    if value is None:
        return 0.0
    return float(value)


class Bill(db.Model):
    __tablename__ = 'bills'
    __table_args__ = (
        CheckConstraint('tax_amount >= 0', name='ck_bills_tax_non_negative'),
        CheckConstraint('tip_amount >= 0', name='ck_bills_tip_non_negative'),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(255), nullable=False, default='')
    status = db.Column(db.String(20), nullable=False, default='pending')
    tax_amount = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    tip_amount = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal('0.00'))

    # Timestamps
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    items = db.relationship('Item', backref='bill', lazy=True, order_by='Item.id')
    participants = db.relationship('Participant', backref='bill', lazy=True, order_by='Participant.id')

    def to_dict(self, include_children=False):
        data = {
            'id': self.id,
            'name': self.name,
            'status': self.status,
            'tax_amount': _money(self.tax_amount),
            'tip_amount': _money(self.tip_amount),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        if include_children:
            data['items'] = [item.to_dict() for item in self.items]
            data['participants'] = [participant.to_dict() for participant in self.participants]
        return data

    def __repr__(self):
        return f'<Bill {self.id} - {self.name}>'


class Item(db.Model):
    __tablename__ = 'items'
    __table_args__ = (
        CheckConstraint('price >= 0', name='ck_items_price_non_negative'),
        CheckConstraint('quantity >= 1', name='ck_items_quantity_positive'),
    )

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.String(36), db.ForeignKey('bills.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    assignments = db.relationship('ItemAssignment', backref='item', lazy=True, passive_deletes='all')

    def to_dict(self):
        return {
            'id': self.id,
            'bill_id': self.bill_id,
            'name': self.name,
            'price': _money(self.price),
            'quantity': self.quantity,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Item {self.id} - {self.name}>'


class Participant(db.Model):
    __tablename__ = 'participants'
    __table_args__ = (
        CheckConstraint('share_of_common_costs >= 0', name='ck_participants_common_costs_non_negative'),
    )

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.String(36), db.ForeignKey('bills.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    payment_status = db.Column(db.String(20), nullable=False, default='unpaid')
    share_of_common_costs = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal('0.00'))

    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    assignments = db.relationship('ItemAssignment', backref='participant', lazy=True, passive_deletes='all')

    def to_dict(self):
        return {
            'id': self.id,
            'bill_id': self.bill_id,
            'name': self.name,
            'payment_status': self.payment_status,
            'share_of_common_costs': _money(self.share_of_common_costs),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Participant {self.id} - {self.name}>'


class ItemAssignment(db.Model):
    """Many-to-many edge between an item and a participant of the same bill"""
    __tablename__ = 'item_assignments'

    # The composite key is what makes a duplicate pair impossible
    item_id = db.Column(db.Integer, db.ForeignKey('items.id', ondelete='CASCADE'), primary_key=True)
    participant_id = db.Column(db.Integer, db.ForeignKey('participants.id', ondelete='CASCADE'), primary_key=True)
    created_at = db.Column(db.DateTime, default=_utcnow)

    def to_dict(self):
        return {
            'item_id': self.item_id,
            'participant_id': self.participant_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<ItemAssignment item={self.item_id} participant={self.participant_id}>'
