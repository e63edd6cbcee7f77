"""
Payment allocation across fee components.

Three strategies spread a payment over the outstanding components of a
student's fees:

* ``overdue_first`` - overdue components first, then by priority, each paid
  in full before moving on;
* ``priority_based`` - by priority only, each paid in full before moving on;
* ``proportional`` - every component gets a share of the payment in
  proportion to its balance.

Amounts are Decimals in currency units and are rounded to the cent. A
proportional split hands leftover cents to the largest remainders, so the
allocations always add up to the payment. Payments above the total balance
pay everything off and report the rest as unallocated.
"""
from dataclasses import dataclass, field, asdict
from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP
from typing import List, Optional

from errors import ValidationError

QUANTUM = Decimal('0.01')

OVERDUE_FIRST = 'overdue_first'
PRIORITY_BASED = 'priority_based'
PROPORTIONAL = 'proportional'
STRATEGIES = (OVERDUE_FIRST, PRIORITY_BASED, PROPORTIONAL)

COMPONENT_STATUSES = ('due', 'overdue', 'paid')


@dataclass
class FeeComponent:
    component_id: str
    name: str
    balance: Decimal
    priority: int = 0
    status: str = 'due'
    structure_id: Optional[str] = None
    structure_name: Optional[str] = None


@dataclass
class Allocation:
    component_id: str
    component_name: str
    amount: Decimal
    priority: int = 0
    structure_id: Optional[str] = None
    structure_name: Optional[str] = None


@dataclass
class AllocationPlan:
    strategy: str
    amount: Decimal
    allocations: List[Allocation] = field(default_factory=list)
    unallocated: Decimal = Decimal('0.00')

    @property
    def allocated(self):
        return sum((a.amount for a in self.allocations), Decimal('0.00'))


@dataclass
class ValidationIssue:
    field: str
    message: str
    type: str = 'error'


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)


def to_money(value, name='amount'):
    try:
        return Decimal(str(value)).quantize(QUANTUM, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a number")


def _allocation(component, amount):
    return Allocation(
        component_id=component.component_id,
        component_name=component.name,
        amount=amount,
        priority=component.priority,
        structure_id=component.structure_id,
        structure_name=component.structure_name,
    )


def _greedy(components, amount):
    allocations = []
    remaining = amount
    for component in components:
        if remaining <= 0:
            break
        share = min(remaining, component.balance)
        if share > 0:
            allocations.append(_allocation(component, share))
            remaining -= share
    return allocations


def _proportional(components, amount):
    total_balance = sum(c.balance for c in components)
    units = int(amount / QUANTUM)

    shares = []
    for index, component in enumerate(components):
        exact = component.balance * amount / total_balance / QUANTUM
        floor = int(exact.to_integral_value(rounding=ROUND_FLOOR))
        shares.append([component, floor, exact - floor, index])

    leftover = units - sum(s[1] for s in shares)
    # largest remainder first; ties go to the higher priority component
    for share in sorted(shares, key=lambda s: (-s[2], s[0].priority, s[3])):
        if leftover <= 0:
            break
        if (share[1] + 1) * QUANTUM <= share[0].balance:
            share[1] += 1
            leftover -= 1

    return [
        _allocation(component, units_ * QUANTUM)
        for component, units_, _, _ in shares
        if units_ > 0
    ]


def suggest_allocation(components, amount, strategy=OVERDUE_FIRST):
    if strategy not in STRATEGIES:
        raise ValidationError(f"strategy must be one of {', '.join(STRATEGIES)}")
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError('Payment amount must be greater than 0')

    outstanding = [c for c in components if c.balance > 0]
    total_balance = sum((c.balance for c in outstanding), Decimal('0.00'))
    to_allocate = min(amount, total_balance)

    if not outstanding:
        allocations = []
    elif strategy == PROPORTIONAL:
        allocations = _proportional(outstanding, to_allocate)
    elif strategy == OVERDUE_FIRST:
        ordered = sorted(outstanding, key=lambda c: (c.status != 'overdue', c.priority))
        allocations = _greedy(ordered, to_allocate)
    else:
        allocations = _greedy(sorted(outstanding, key=lambda c: c.priority), to_allocate)

    plan = AllocationPlan(strategy=strategy, amount=amount, allocations=allocations)
    plan.unallocated = amount - plan.allocated
    return plan


def validate_allocation(components, allocations):
    errors = []
    warnings = []
    balances = {c.component_id: c.balance for c in components}

    allocated_per_component = {}
    for allocation in allocations:
        balance = balances.get(allocation.component_id)
        if balance is None:
            errors.append(ValidationIssue('allocation', f"Component {allocation.component_name} not found"))
            continue

        if allocation.amount <= 0:
            errors.append(ValidationIssue('amount', f"Amount for {allocation.component_name} must be greater than 0"))
        allocated_per_component[allocation.component_id] = (
            allocated_per_component.get(allocation.component_id, Decimal('0.00')) + allocation.amount
        )

    names = {c.component_id: c.name for c in components}
    for component_id, allocated in allocated_per_component.items():
        balance = balances[component_id]
        if allocated > balance:
            errors.append(ValidationIssue(
                'amount', f"Amount {allocated:.2f} exceeds balance {balance:.2f} for {names[component_id]}"))
        elif allocated == balance:
            warnings.append(ValidationIssue(
                'allocation', f"{names[component_id]} will be fully paid", type='warning'))

    total = sum((a.amount for a in allocations), Decimal('0.00'))
    if total <= 0:
        errors.append(ValidationIssue('total', 'Total allocation must be greater than 0'))

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


# JSON helpers

def components_from_json(items):
    if not isinstance(items, list):
        raise ValidationError('components must be a list')
    components = []
    for item in items:
        try:
            component = FeeComponent(
                component_id=str(item['id']),
                name=item.get('name') or str(item['id']),
                balance=to_money(item['balance'], 'balance'),
                priority=int(item.get('priority', 0)),
                status=item.get('status', 'due'),
                structure_id=item.get('structure_id'),
                structure_name=item.get('structure_name'),
            )
        except (KeyError, TypeError, ValueError, AttributeError):
            raise ValidationError('Each component needs an id and a numeric balance')
        if component.status not in COMPONENT_STATUSES:
            raise ValidationError(f"component status must be one of {', '.join(COMPONENT_STATUSES)}")
        if component.balance < 0:
            raise ValidationError('balance cannot be negative')
        components.append(component)
    return components


def allocations_from_json(items):
    if not isinstance(items, list):
        raise ValidationError('allocations must be a list')
    allocations = []
    for item in items:
        try:
            allocations.append(Allocation(
                component_id=str(item['component_id']),
                component_name=item.get('component_name') or str(item['component_id']),
                amount=to_money(item['amount']),
                priority=int(item.get('priority', 0)),
                structure_id=item.get('structure_id'),
                structure_name=item.get('structure_name'),
            ))
        except (KeyError, TypeError, ValueError, AttributeError):
            raise ValidationError('Each allocation needs a component_id and a numeric amount')
    return allocations


def _jsonable(data):
    if isinstance(data, dict):
        return {k: _jsonable(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_jsonable(v) for v in data]
    if isinstance(data, Decimal):
        return float(data)
    return data


def plan_to_json(plan):
    data = _jsonable(asdict(plan))
    data['allocated'] = float(plan.allocated)
    return data


def result_to_json(result):
    return _jsonable(asdict(result))
