"""
Validated mutations on a bill's participants, items and item assignments.

Every write checks its input and the bill's referential rules first, then
runs inside repository.transaction(bill_id), so a failed call leaves the
bill exactly as it was. Totals are never stored; summarize() recomputes
them from a fresh snapshot each time.
"""

import logging
from collections import namedtuple

from bill_splitting_logic import calculate_split
from errors import Conflict, NotFound, ValidationError
from models import BILL_STATUSES
from validators import parse_amount, parse_name, parse_quantity

logger = logging.getLogger(__name__)

BillSnapshot = namedtuple('BillSnapshot', ['bill', 'items', 'participants', 'assignments'])


class AssignmentStore:

    def __init__(self, repository):
        self.repository = repository

    # --------- Lookups ---------

    def get_bill(self, bill_id):
        bill = self.repository.get_bill(bill_id)
        if bill is None:
            raise NotFound('Bill not found')
        return bill

    def _get_item_in_bill(self, bill_id, item_id):
        item = self.repository.get_item(item_id)
        if item is None or item.bill_id != bill_id:
            raise NotFound('Item not found in this bill')
        return item

    def _get_participant_in_bill(self, bill_id, participant_id):
        participant = self.repository.get_participant(participant_id)
        if participant is None or participant.bill_id != bill_id:
            raise NotFound('Participant not found in this bill')
        return participant

    # --------- Bills ---------

    def create_bill(self, name, tax_amount=0, tip_amount=0):
        fields = {
            'name': parse_name(name),
            'status': 'pending',
            'tax_amount': parse_amount(tax_amount, 'tax_amount'),
            'tip_amount': parse_amount(tip_amount, 'tip_amount'),
        }
        with self.repository.transaction():
            bill = self.repository.create_bill(**fields)
            bill_id = bill.id
        logger.info("Created bill %s", bill_id)
        return self.get_bill(bill_id)

    def update_bill(self, bill_id, tax_amount=None, tip_amount=None, name=None):
        """Partial update; only the fields that were provided change"""
        updates = {}
        if name is not None:
            updates['name'] = parse_name(name)
        if tax_amount is not None:
            updates['tax_amount'] = parse_amount(tax_amount, 'tax_amount')
        if tip_amount is not None:
            updates['tip_amount'] = parse_amount(tip_amount, 'tip_amount')
        if not updates:
            raise ValidationError('No fields to update')

        with self.repository.transaction(bill_id):
            bill = self.get_bill(bill_id)
            self.repository.update_bill(bill, **updates)
        logger.info("Updated bill %s: %s", bill_id, sorted(updates))
        return self.get_bill(bill_id)

    def get_status(self, bill_id):
        return self.get_bill(bill_id).status

    def set_status(self, bill_id, status):
        if status not in BILL_STATUSES:
            raise ValidationError(f'Invalid status: {status}')
        with self.repository.transaction(bill_id):
            bill = self.get_bill(bill_id)
            self.repository.update_bill(bill, status=status)
        logger.info("Bill %s is now %s", bill_id, status)

    # --------- Participants ---------

    def add_participant(self, bill_id, name, share_of_common_costs=0):
        fields = {
            'name': parse_name(name),
            'share_of_common_costs': parse_amount(share_of_common_costs, 'share_of_common_costs'),
        }
        with self.repository.transaction(bill_id):
            self.get_bill(bill_id)
            participant = self.repository.create_participant(bill_id, **fields)
            participant_id = participant.id
        logger.info("Added participant %s to bill %s", participant_id, bill_id)
        return self.repository.get_participant(participant_id)

    def list_participants(self, bill_id):
        self.get_bill(bill_id)
        return self.repository.list_participants(bill_id)

    def remove_participant(self, bill_id, participant_id):
        """Drop a participant together with all of their item assignments"""
        with self.repository.transaction(bill_id):
            participant = self._get_participant_in_bill(bill_id, participant_id)
            removed = self.repository.delete_assignments_for_participant(participant_id)
            self.repository.delete_participant(participant)
        logger.info("Removed participant %s from bill %s (%d assignments)",
                    participant_id, bill_id, removed)

    # --------- Items ---------

    def add_item(self, bill_id, name, price, quantity=1):
        fields = {
            'name': parse_name(name),
            'price': parse_amount(price, 'price'),
            'quantity': parse_quantity(quantity),
        }
        with self.repository.transaction(bill_id):
            self.get_bill(bill_id)
            item = self.repository.create_item(bill_id, **fields)
            item_id = item.id
        return self.repository.get_item(item_id)

    def list_items(self, bill_id):
        self.get_bill(bill_id)
        return self.repository.list_items(bill_id)

    def update_item(self, item_id, name=None, price=None, quantity=None):
        updates = {}
        if name is not None:
            updates['name'] = parse_name(name)
        if price is not None:
            updates['price'] = parse_amount(price, 'price')
        if quantity is not None:
            updates['quantity'] = parse_quantity(quantity)
        if not updates:
            raise ValidationError('No fields to update')

        item = self.repository.get_item(item_id)
        if item is None:
            raise NotFound('Item not found')
        bill_id = item.bill_id

        with self.repository.transaction(bill_id):
            item = self.repository.get_item(item_id)
            if item is None:
                raise NotFound('Item not found')
            self.repository.update_item(item, **updates)
        logger.info("Updated item %s on bill %s: %s", item_id, bill_id, sorted(updates))
        return self.repository.get_item(item_id)

    # --------- Assignments ---------

    def add_assignment(self, bill_id, item_id, participant_id):
        with self.repository.transaction(bill_id):
            self.get_bill(bill_id)
            self._get_item_in_bill(bill_id, item_id)
            self._get_participant_in_bill(bill_id, participant_id)
            if self.repository.get_assignment(item_id, participant_id) is not None:
                raise Conflict('Item is already assigned to this participant')
            self.repository.create_assignment(item_id, participant_id)
        logger.debug("Assigned item %s to participant %s on bill %s", item_id, participant_id, bill_id)
        return self.repository.get_assignment(item_id, participant_id)

    def remove_assignment(self, bill_id, item_id, participant_id):
        with self.repository.transaction(bill_id):
            self._get_item_in_bill(bill_id, item_id)
            self._get_participant_in_bill(bill_id, participant_id)
            assignment = self.repository.get_assignment(item_id, participant_id)
            if assignment is None:
                raise NotFound('Item assignment not found')
            self.repository.delete_assignment(assignment)
        logger.debug("Unassigned item %s from participant %s on bill %s", item_id, participant_id, bill_id)

    def list_assignments(self, bill_id):
        self.get_bill(bill_id)
        return self.repository.list_assignments(bill_id)

    # --------- Extraction results ---------

    def ingest_extracted_data(self, bill_id, extracted):
        """
        Store what the extraction workflow read off the receipt.

        Sets the bill's tax and tip, inserts every extracted item and marks
        the bill completed, all in one transaction. Any receipt total that
        came with the data is ignored; totals are always recomputed.
        """
        tax = parse_amount(extracted.get('tax', 0), 'tax')
        tip = parse_amount(extracted.get('tip', 0), 'tip')
        items = [
            {
                'name': parse_name(item.get('name')),
                'price': parse_amount(item.get('price'), 'price'),
                'quantity': parse_quantity(item.get('quantity', 1)),
            }
            for item in extracted.get('items') or []
        ]

        with self.repository.transaction(bill_id):
            bill = self.get_bill(bill_id)
            self.repository.update_bill(bill, tax_amount=tax, tip_amount=tip, status='completed')
            for fields in items:
                self.repository.create_item(bill_id, **fields)
        logger.info("Ingested %d extracted items into bill %s", len(items), bill_id)

    # --------- Totals ---------

    def snapshot(self, bill_id):
        bill = self.get_bill(bill_id)
        return BillSnapshot(
            bill=bill,
            items=self.repository.list_items(bill_id),
            participants=self.repository.list_participants(bill_id),
            assignments=self.repository.list_assignments(bill_id),
        )

    def summarize(self, bill_id):
        """Recompute the bill's allocation from its current state"""
        # Read-only: no bill_id, so readers never take the bill's row lock
        with self.repository.transaction():
            snap = self.snapshot(bill_id)
            result = calculate_split(snap.items, snap.participants, snap.assignments,
                                     snap.bill.tax_amount, snap.bill.tip_amount)
        result['bill_id'] = bill_id
        return result
