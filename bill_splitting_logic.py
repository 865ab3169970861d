from collections.abc import Mapping
from decimal import Decimal, ROUND_HALF_UP
from fractions import Fraction
from typing import Any, Dict, Iterable, List, Optional, Tuple

ZERO = Fraction(0)


def _field(record: Any, name: str, default: Any = None) -> Any:
    """Read a field from either a dict or an object (ORM row, record)"""
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


def _to_fraction(value: Any) -> Fraction:
    """Exact rational view of a money amount"""
    # Handle null/empty amounts
    if value is None or value == '':
        return ZERO
    if isinstance(value, float):
        # Go through str so 0.1 means one tenth, not its binary approximation
        return Fraction(str(value))
    return Fraction(value)


def _assignment_pair(assignment: Any) -> Tuple[Any, Any]:
    if isinstance(assignment, (tuple, list)):
        item_id, participant_id = assignment
        return item_id, participant_id
    return _field(assignment, 'item_id'), _field(assignment, 'participant_id')


def line_total(item: Any) -> Fraction:
    """price x quantity for one receipt line"""
    return _to_fraction(_field(item, 'price')) * int(_field(item, 'quantity', 1) or 1)


def calculate_split(items: Iterable[Any],
                    participants: Iterable[Any],
                    assignments: Iterable[Any],
                    tax_amount: Any = 0,
                    tip_amount: Any = 0) -> Dict[str, Any]:
    """
    Allocate a bill's items, tax and tip across its participants.

    Each item's line total is split evenly between the participants assigned
    to it; an item with nobody assigned stays unassigned and only counts
    towards the bill's item total. Tax and tip are shared in proportion to
    each participant's part of the assigned item cost.

    All amounts in the result are exact Fractions. Use format_split() to get
    currency-rounded values for display.
    """
    items = list(items)
    participants = list(participants)
    tax = _to_fraction(tax_amount)
    tip = _to_fraction(tip_amount)

    participant_ids = [_field(p, 'id') for p in participants]
    known_participants = set(participant_ids)
    known_items = {_field(item, 'id') for item in items}

    # Sharers per item, in assignment order; dangling or repeated edges are ignored
    sharers: Dict[Any, List[Any]] = {}
    for assignment in assignments:
        item_id, participant_id = _assignment_pair(assignment)
        if item_id not in known_items or participant_id not in known_participants:
            continue
        item_sharers = sharers.setdefault(item_id, [])
        if participant_id not in item_sharers:
            item_sharers.append(participant_id)

    participant_items: Dict[Any, List[Dict[str, Any]]] = {pid: [] for pid in participant_ids}
    participant_item_totals: Dict[Any, Fraction] = {pid: ZERO for pid in participant_ids}

    bill_items_total = ZERO
    item_rows = []
    for item in items:
        item_id = _field(item, 'id')
        total = line_total(item)
        bill_items_total += total

        item_sharers = sharers.get(item_id, [])
        sharer_count = len(item_sharers)
        share = total / sharer_count if sharer_count else ZERO

        for participant_id in item_sharers:
            participant_item_totals[participant_id] += share
            participant_items[participant_id].append({
                'item_id': item_id,
                'name': _field(item, 'name'),
                'line_total': total,
                'sharer_count': sharer_count,
                'share': share,
            })

        item_rows.append({
            'item_id': item_id,
            'name': _field(item, 'name'),
            'price': _to_fraction(_field(item, 'price')),
            'quantity': int(_field(item, 'quantity', 1) or 1),
            'line_total': total,
            'sharer_count': sharer_count,
            'share_per_person': share,
            'assigned_to': list(item_sharers),
        })

    total_assigned_items = sum(participant_item_totals.values(), ZERO)
    total_tax_tip = tax + tip

    participant_rows = []
    for participant in participants:
        participant_id = _field(participant, 'id')
        item_total = participant_item_totals[participant_id]
        if total_assigned_items > 0:
            cost_ratio = item_total / total_assigned_items
        else:
            # Nothing assigned yet: tax and tip stay unallocated
            cost_ratio = ZERO
        tax_share = tax * cost_ratio
        tip_share = tip * cost_ratio
        tax_tip_share = tax_share + tip_share
        total = item_total + tax_tip_share
        common_costs = _to_fraction(_field(participant, 'share_of_common_costs'))

        participant_rows.append({
            'participant_id': participant_id,
            'name': _field(participant, 'name'),
            'item_total': item_total,
            'cost_percentage': cost_ratio * 100,
            'tax_share': tax_share,
            'tip_share': tip_share,
            'tax_tip_share': tax_tip_share,
            'total': total,
            'share_of_common_costs': common_costs,
            'amount_due': total + common_costs,
            'items': participant_items[participant_id],
        })

    return {
        'summary': {
            'bill_items_total': bill_items_total,
            'total_assigned_items': total_assigned_items,
            'unassigned_items_total': bill_items_total - total_assigned_items,
            'tax_amount': tax,
            'tip_amount': tip,
            'total_tax_tip': total_tax_tip,
            'bill_total': bill_items_total + tax + tip,
        },
        'participants': participant_rows,
        'items': item_rows,
    }


def _round_currency(amount: Any) -> float:
    """Round to 2 decimal places for currency"""
    if amount is None:
        return 0.0
    if isinstance(amount, Fraction):
        amount = Decimal(amount.numerator) / Decimal(amount.denominator)
    else:
        amount = Decimal(str(amount))
    return float(amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def format_split(value: Any) -> Any:
    """Currency-round every exact amount in a calculate_split() result"""
    if isinstance(value, Fraction):
        return _round_currency(value)
    if isinstance(value, dict):
        return {key: format_split(v) for key, v in value.items()}
    if isinstance(value, list):
        return [format_split(v) for v in value]
    return value


class BillSplitter:
    """In-memory bill builder, handy for scripts and tests"""

    def __init__(self, tax_amount: Any = 0, tip_amount: Any = 0):
        self.participants: List[Dict[str, Any]] = []
        self.items: List[Dict[str, Any]] = []
        self.assignments: List[Tuple[int, int]] = []
        self.tax_amount = _to_fraction(tax_amount)
        self.tip_amount = _to_fraction(tip_amount)

    def add_participant(self, name: str, share_of_common_costs: Any = 0) -> int:
        """Add a participant to the bill split"""
        participant = {
            'id': max((p['id'] for p in self.participants), default=0) + 1,
            'name': name,
            'share_of_common_costs': _to_fraction(share_of_common_costs),
        }
        self.participants.append(participant)
        return participant['id']

    def add_item(self, name: str, price: Any, quantity: int = 1,
                 participants: Optional[List[int]] = None) -> int:
        item = {
            'id': max((i['id'] for i in self.items), default=0) + 1,
            'name': name,
            'price': _to_fraction(price),
            'quantity': quantity,
        }
        self.items.append(item)
        for participant_id in participants or []:
            self.assign_item_to_participant(item['id'], participant_id)
        return item['id']

    def assign_item_to_participant(self, item_id: int, participant_id: int):
        if not any(i['id'] == item_id for i in self.items):
            raise ValueError(f"Item {item_id} not found")
        if not any(p['id'] == participant_id for p in self.participants):
            raise ValueError(f"Participant {participant_id} not found")
        if (item_id, participant_id) not in self.assignments:
            self.assignments.append((item_id, participant_id))

    def remove_participant(self, participant_id: int):
        self.assignments = [a for a in self.assignments if a[1] != participant_id]
        self.participants = [p for p in self.participants if p['id'] != participant_id]

    def set_tax_and_tip(self, tax_amount: Any = 0, tip_amount: Any = 0):
        """Set tax and tip amounts"""
        self.tax_amount = _to_fraction(tax_amount)
        self.tip_amount = _to_fraction(tip_amount)

    def calculate_split(self) -> Dict[str, Any]:
        return calculate_split(self.items, self.participants, self.assignments,
                               self.tax_amount, self.tip_amount)
