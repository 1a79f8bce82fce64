"""Record stores for payments and quote leads.

The lifecycle only talks to these interfaces, so a database-backed store can be
dropped in without touching the state machine. The in-memory versions keep
everything for the lifetime of the process.
"""
from typing import Dict, List, Optional, Protocol

from hepeco_server.models import Payment, QuoteLead


class PaymentStore(Protocol):
    def get(self, reference: str) -> Optional[Payment]: ...

    def put(self, payment: Payment) -> None: ...

    def list_by_phone(self, phone: str) -> List[Payment]: ...

    def list_all(self) -> List[Payment]: ...


class QuoteStore(Protocol):
    def get(self, quote_id: str) -> Optional[QuoteLead]: ...

    def put(self, quote: QuoteLead) -> None: ...

    def list_all(self) -> List[QuoteLead]: ...


class InMemoryPaymentStore:
    def __init__(self):
        self._payments: Dict[str, Payment] = {}
        self._by_phone: Dict[str, List[str]] = {}

    def get(self, reference: str) -> Optional[Payment]:
        return self._payments.get(reference)

    def put(self, payment: Payment) -> None:
        if payment.reference not in self._payments:
            self._by_phone.setdefault(payment.phone, []).append(payment.reference)
        self._payments[payment.reference] = payment

    def list_by_phone(self, phone: str) -> List[Payment]:
        return [self._payments[ref] for ref in self._by_phone.get(phone, [])]

    def list_all(self) -> List[Payment]:
        return list(self._payments.values())

    def __len__(self) -> int:
        return len(self._payments)


class InMemoryQuoteStore:
    def __init__(self):
        self._quotes: Dict[str, QuoteLead] = {}

    def get(self, quote_id: str) -> Optional[QuoteLead]:
        return self._quotes.get(quote_id)

    def put(self, quote: QuoteLead) -> None:
        self._quotes[quote.id] = quote

    def list_all(self) -> List[QuoteLead]:
        return list(self._quotes.values())

    def __len__(self) -> int:
        return len(self._quotes)
