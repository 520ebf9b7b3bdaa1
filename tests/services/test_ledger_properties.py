"""
Property-based tests for LedgerService over random apply/reverse sequences.

Hypothesis generates a small book of invoices and credit documents and a
sequence of applications and reversals against it.  After every step:
- Balances stay within 0 and the original amount
- What left the debit documents equals what left the credit documents,
  and both equal the net of applications minus reversals
- PAGADO exactly when the balance is zero
- The customer's credit_used equals the open debit balances
"""

from datetime import date
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from receivables_config import ReceivablesConfig
from receivables_kernel.domain.clock import DeterministicClock
from receivables_kernel.domain.documents import (
    Allocation,
    Customer,
    Document,
    DocumentStatus,
    DocumentType,
)
from receivables_kernel.domain.values import Money
from receivables_kernel.stores import InMemoryStore
from receivables_services import LedgerService

_SETTINGS = settings(
    max_examples=100,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

ON = date(2024, 3, 1)

cents = st.integers(min_value=1, max_value=500_000)
book = st.tuples(
    st.lists(cents, min_size=1, max_size=4),
    st.lists(cents, min_size=1, max_size=4),
)
steps = st.lists(
    st.one_of(
        st.tuples(st.just("apply"), st.integers(0, 3), st.integers(0, 3), cents),
        st.tuples(st.just("reverse"), st.integers(0, 50)),
    ),
    max_size=25,
)


def _money(cents_value: int) -> Money:
    return Money.of(Decimal(cents_value).scaleb(-2), "NIO")


def _ledger(debit_cents: list[int], credit_cents: list[int]):
    store = InMemoryStore(lock_timeout=2.0)
    customer = store.create_customer(
        Customer(
            id=None, code="C1", name="Sequence",
            credit_limit=_money(10**10),
            credit_used=_money(sum(debit_cents)),
            credit_on_hold=Money.zero("NIO"),
        )
    )

    def _document(number: str, document_type: DocumentType, amount: int) -> Document:
        return store.create_document(
            Document(
                id=None,
                customer_id=customer.id,
                document_type=document_type,
                document_number=number,
                document_date=ON,
                original_amount=_money(amount),
                balance_amount=_money(amount),
            )
        )

    debits = [_document(f"F-{i}", DocumentType.INVOICE, c) for i, c in enumerate(debit_cents)]
    credits = [_document(f"R-{i}", DocumentType.RECEIPT, c) for i, c in enumerate(credit_cents)]
    ledger = LedgerService(
        store, store, clock=DeterministicClock(), config=ReceivablesConfig()
    )
    return store, ledger, customer, debits, credits


def _check_book(store, customer, debits, credits, net_applied: Money) -> None:
    current_debits = [store.get_document(d.id) for d in debits]
    current_credits = [store.get_document(c.id) for c in credits]

    for doc in current_debits + current_credits:
        assert not doc.balance_amount.is_negative
        assert doc.balance_amount <= doc.original_amount
        assert (doc.status == DocumentStatus.PAGADO) == doc.balance_amount.is_zero

    debit_moved = Money.sum(
        (d.original_amount - d.balance_amount for d in current_debits), "NIO"
    )
    credit_moved = Money.sum(
        (c.original_amount - c.balance_amount for c in current_credits), "NIO"
    )
    assert debit_moved == credit_moved == net_applied

    open_debits = Money.sum((d.balance_amount for d in current_debits), "NIO")
    assert store.get_customer(customer.id).credit_used == open_debits


def _net_recorded(store, documents) -> Money:
    applications = store.get_applications_for_documents([d.id for d in documents])
    net = Money.zero("NIO")
    for application in applications:
        net = net - application.amount if application.is_reversal else net + application.amount
    return net


@_SETTINGS
@given(amounts=book, sequence=steps)
def test_apply_reverse_sequences_conserve_money(amounts, sequence):
    debit_cents, credit_cents = amounts
    store, ledger, customer, debits, credits = _ledger(debit_cents, credit_cents)
    active: dict[int, Money] = {}

    for step in sequence:
        if step[0] == "apply":
            _, source_index, target_index, want = step
            source = store.get_document(credits[source_index % len(credits)].id)
            target = store.get_document(debits[target_index % len(debits)].id)
            amount = min(_money(want), source.balance_amount, target.balance_amount)
            if amount.is_zero:
                continue
            created = ledger.apply_credit(source.id, [Allocation(target.id, amount)], ON)
            for application in created:
                active[application.id] = application.amount
        else:
            if not active:
                continue
            ids = sorted(active)
            application_id = ids[step[1] % len(ids)]
            ledger.reverse_application(application_id, ON, reason="sequence")
            del active[application_id]

        net_applied = Money.sum(active.values(), "NIO")
        _check_book(store, customer, debits, credits, net_applied)
        assert _net_recorded(store, debits + credits) == net_applied


@_SETTINGS
@given(amounts=book)
def test_reversing_everything_restores_the_book(amounts):
    debit_cents, credit_cents = amounts
    store, ledger, customer, debits, credits = _ledger(debit_cents, credit_cents)

    applied = []
    for source in credits:
        for target in debits:
            s = store.get_document(source.id)
            t = store.get_document(target.id)
            amount = min(s.balance_amount, t.balance_amount)
            if not amount.is_zero:
                applied += ledger.apply_credit(s.id, [Allocation(t.id, amount)], ON)

    for application in reversed(applied):
        ledger.reverse_application(application.id, ON)

    for original in debits + credits:
        restored = store.get_document(original.id)
        assert restored.balance_amount == original.balance_amount
        assert restored.status == DocumentStatus.PENDIENTE
    _check_book(store, customer, debits, credits, Money.zero("NIO"))
