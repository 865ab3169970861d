"""
Storage behind the assignment store.

The store only talks to a BillRepository, so the validation rules can run
against the real database (SQLAlchemyBillRepository) or against plain
in-process records (InMemoryBillRepository) in tests.
"""

import copy
import itertools
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from errors import Conflict
from extensions import db
from models import Bill, Item, ItemAssignment, Participant

logger = logging.getLogger(__name__)


class BillRepository:
    """Get/create/update/delete per entity, plus a per-bill transaction."""

    def transaction(self, bill_id=None):
        """Context manager; everything inside commits or rolls back together"""
        raise NotImplementedError

    # Bills
    def get_bill(self, bill_id):
        raise NotImplementedError

    def create_bill(self, **fields):
        raise NotImplementedError

    def update_bill(self, bill, **fields):
        raise NotImplementedError

    # Items
    def get_item(self, item_id):
        raise NotImplementedError

    def list_items(self, bill_id):
        raise NotImplementedError

    def create_item(self, bill_id, **fields):
        raise NotImplementedError

    def update_item(self, item, **fields):
        raise NotImplementedError

    # Participants
    def get_participant(self, participant_id):
        raise NotImplementedError

    def list_participants(self, bill_id):
        raise NotImplementedError

    def create_participant(self, bill_id, **fields):
        raise NotImplementedError

    def delete_participant(self, participant):
        raise NotImplementedError

    # Assignments
    def get_assignment(self, item_id, participant_id):
        raise NotImplementedError

    def list_assignments(self, bill_id):
        raise NotImplementedError

    def create_assignment(self, item_id, participant_id):
        raise NotImplementedError

    def delete_assignment(self, assignment):
        raise NotImplementedError

    def delete_assignments_for_participant(self, participant_id):
        raise NotImplementedError


class SQLAlchemyBillRepository(BillRepository):
    """Repository over the Flask-SQLAlchemy session"""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    @contextmanager
    def transaction(self, bill_id=None):
        session = self.session
        try:
            if bill_id is not None:
                # Row lock on the bill serializes concurrent editors of the same bill.
                # SQLite ignores FOR UPDATE and serializes writers on its own.
                session.query(Bill).filter_by(id=bill_id).with_for_update().first()
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise

    def _add(self, obj):
        self.session.add(obj)
        self.session.flush()
        return obj

    def _update(self, obj, fields):
        for key, value in fields.items():
            setattr(obj, key, value)
        self.session.flush()
        return obj

    def get_bill(self, bill_id):
        return self.session.get(Bill, bill_id)

    def create_bill(self, **fields):
        return self._add(Bill(**fields))

    def update_bill(self, bill, **fields):
        return self._update(bill, fields)

    def get_item(self, item_id):
        return self.session.get(Item, item_id)

    def list_items(self, bill_id):
        return self.session.query(Item).filter_by(bill_id=bill_id).order_by(Item.id).all()

    def create_item(self, bill_id, **fields):
        return self._add(Item(bill_id=bill_id, **fields))

    def update_item(self, item, **fields):
        return self._update(item, fields)

    def get_participant(self, participant_id):
        return self.session.get(Participant, participant_id)

    def list_participants(self, bill_id):
        return (self.session.query(Participant)
                .filter_by(bill_id=bill_id)
                .order_by(Participant.id)
                .all())

    def create_participant(self, bill_id, **fields):
        return self._add(Participant(bill_id=bill_id, **fields))

    def delete_participant(self, participant):
        self.session.delete(participant)
        self.session.flush()

    def get_assignment(self, item_id, participant_id):
        return self.session.get(ItemAssignment, (item_id, participant_id))

    def list_assignments(self, bill_id):
        return (self.session.query(ItemAssignment)
                .join(Item, ItemAssignment.item_id == Item.id)
                .filter(Item.bill_id == bill_id)
                .order_by(ItemAssignment.item_id, ItemAssignment.participant_id)
                .all())

    def create_assignment(self, item_id, participant_id):
        assignment = ItemAssignment(item_id=item_id, participant_id=participant_id)
        try:
            return self._add(assignment)
        except IntegrityError as exc:
            # Lost a race against an identical request
            raise Conflict('Item is already assigned to this participant') from exc

    def delete_assignment(self, assignment):
        self.session.delete(assignment)
        self.session.flush()

    def delete_assignments_for_participant(self, participant_id):
        return (self.session.query(ItemAssignment)
                .filter_by(participant_id=participant_id)
                .delete(synchronize_session='fetch'))


def _utcnow():
    return datetime.now(timezone.utc)


@dataclass
class BillRecord:
    id: str
    name: str = ''
    status: str = 'pending'
    tax_amount: Decimal = Decimal('0.00')
    tip_amount: Decimal = Decimal('0.00')
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class ItemRecord:
    id: int
    bill_id: str
    name: str
    price: Decimal
    quantity: int = 1


@dataclass
class ParticipantRecord:
    id: int
    bill_id: str
    name: str
    payment_status: str = 'unpaid'
    share_of_common_costs: Decimal = Decimal('0.00')


@dataclass
class AssignmentRecord:
    item_id: int
    participant_id: int


class InMemoryBillRepository(BillRepository):
    """
    Dict-backed repository.

    A single re-entrant lock serializes transactions (so every bill is
    serialized too) and a failed transaction restores the state it started
    from.
    """

    def __init__(self):
        self.bills = {}
        self.items = {}
        self.participants = {}
        self.assignments = {}
        self._item_ids = itertools.count(1)
        self._participant_ids = itertools.count(1)
        self._lock = threading.RLock()

    def _state(self):
        return self.bills, self.items, self.participants, self.assignments

    @contextmanager
    def transaction(self, bill_id=None):
        with self._lock:
            saved = copy.deepcopy(self._state())
            try:
                yield self
            except Exception:
                logger.debug("Rolling back in-memory transaction for bill %s", bill_id)
                self.bills, self.items, self.participants, self.assignments = saved
                raise

    @staticmethod
    def _update(record, fields):
        for key, value in fields.items():
            setattr(record, key, value)
        return record

    def get_bill(self, bill_id):
        return self.bills.get(bill_id)

    def create_bill(self, **fields):
        bill = BillRecord(id=fields.pop('id', None) or str(uuid.uuid4()), **fields)
        self.bills[bill.id] = bill
        return bill

    def update_bill(self, bill, **fields):
        return self._update(bill, fields)

    def get_item(self, item_id):
        return self.items.get(item_id)

    def list_items(self, bill_id):
        return [item for item in self.items.values() if item.bill_id == bill_id]

    def create_item(self, bill_id, **fields):
        item = ItemRecord(id=next(self._item_ids), bill_id=bill_id, **fields)
        self.items[item.id] = item
        return item

    def update_item(self, item, **fields):
        return self._update(item, fields)

    def get_participant(self, participant_id):
        return self.participants.get(participant_id)

    def list_participants(self, bill_id):
        return [p for p in self.participants.values() if p.bill_id == bill_id]

    def create_participant(self, bill_id, **fields):
        participant = ParticipantRecord(id=next(self._participant_ids), bill_id=bill_id, **fields)
        self.participants[participant.id] = participant
        return participant

    def delete_participant(self, participant):
        del self.participants[participant.id]

    def get_assignment(self, item_id, participant_id):
        return self.assignments.get((item_id, participant_id))

    def list_assignments(self, bill_id):
        return [a for (item_id, _), a in sorted(self.assignments.items())
                if item_id in self.items and self.items[item_id].bill_id == bill_id]

    def create_assignment(self, item_id, participant_id):
        key = (item_id, participant_id)
        if key in self.assignments:
            raise Conflict('Item is already assigned to this participant')
        self.assignments[key] = AssignmentRecord(item_id=item_id, participant_id=participant_id)
        return self.assignments[key]

    def delete_assignment(self, assignment):
        del self.assignments[(assignment.item_id, assignment.participant_id)]

    def delete_assignments_for_participant(self, participant_id):
        keys = [key for key in self.assignments if key[1] == participant_id]
        for key in keys:
            del self.assignments[key]
        return len(keys)
