"""Payment reference lifecycle.

A payment is created ``pending`` by :meth:`PaymentLifecycle.generate` and resolved
by :meth:`PaymentLifecycle.verify`::

    pending -> verified          (terminal)
    pending -> fraud_suspected   (terminal)
    pending -> failed -> ...     (retryable, same reference may be verified again)

Verification of an already verified payment is idempotent: the same invoice is
returned and ``verified_at`` is never restamped.
"""
import asyncio
import hashlib
import hmac
import logging
import re
import secrets
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from hepeco_server.config import Settings
from hepeco_server.errors import (
    DuplicateRequestError,
    FraudSuspectedError,
    NotFoundError,
    PaymentExpiredError,
    SessionMismatchError,
    ValidationError,
)
from hepeco_server.gateway import GatewayStatus, PaymentGatewayClient, SimulatedGatewayClient
from hepeco_server.models import (
    GeneratedPayment,
    Invoice,
    LineItem,
    Payment,
    PaymentStatus,
    PaymentSummary,
    VerificationOutcome,
)
from hepeco_server.store import InMemoryPaymentStore, PaymentStore

logger = logging.getLogger("hepeco")


# -----------------------------
# Payment methods
# -----------------------------
MOBILE_MONEY = {
    "mpamba": {"provider": "mpamba", "ussd": "444", "account": "0991234567", "display": "099 123 4567"},
    "airtel": {"provider": "airtel", "ussd": "555", "account": "0881234567", "display": "088 123 4567"},
}
BANK = {
    "bank": "National Bank",
    "account_name": "Hepeco Digital Systems",
    "account_number": "1001234567",
    "branch": "Lilongwe",
}
PAYMENT_METHODS = tuple(MOBILE_MONEY) + ("bank",)

# Malawi subscriber numbers: optional 0 / 265 prefix, network code, 7 digits
PHONE_RE = re.compile(r"^(0|265)?(88|99|98|77)(\d{7})$")

VERIFIED_MESSAGE = "Payment verified successfully"
NOT_RECEIVED_MESSAGE = "Payment not yet received. Please try again in a few minutes."
NOTIFICATION_SUCCESS = "successful"
TERMINAL_STATUSES = (PaymentStatus.VERIFIED, PaymentStatus.FRAUD_SUSPECTED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_phone(phone: Optional[str]) -> str:
    """Return the canonical ``265XXXXXXXXX`` form or raise :class:`ValidationError`."""
    digits = re.sub(r"\D", "", phone or "")
    match = PHONE_RE.match(digits)
    if not match:
        raise ValidationError("Invalid Malawi phone number")
    return f"265{match.group(2)}{match.group(3)}"


def new_reference() -> str:
    return f"HEC{secrets.token_hex(6).upper()}"


def integrity_tag(payload: str, secret: str) -> str:
    # Tamper hint for scanners only
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()[:8]


def build_qr_payload(payment: Payment, secret: str) -> str:
    if payment.method in MOBILE_MONEY:
        mm = MOBILE_MONEY[payment.method]
        body = f"{mm['provider']}:*{mm['ussd']}*1*{mm['account']}*{payment.amount}*{payment.reference}#"
    else:
        body = (
            f"bank:{BANK['bank']}\n"
            f"Acc: {BANK['account_number']}\n"
            f"Amount: {payment.amount}\n"
            f"Ref: {payment.reference}"
        )
    epoch_ms = int(payment.created_at.timestamp() * 1000)
    stamped = f"{body}|{epoch_ms}"
    return f"{stamped}|{integrity_tag(stamped, secret)}"


def payment_instructions(method: str, reference: str) -> List[str]:
    if method in MOBILE_MONEY:
        mm = MOBILE_MONEY[method]
        return [
            f"Dial *{mm['ussd']}#",
            'Select "Send Money"',
            f"Enter number: {mm['display']}",
            "Enter the amount",
            f"Enter reference: {reference}",
        ]
    return [
        f"Bank: {BANK['bank']}",
        f"Account: {BANK['account_name']}",
        f"Account No: {BANK['account_number']}",
        f"Branch: {BANK['branch']}",
        f"Reference: {reference}",
    ]


def build_invoice(payment: Payment) -> Invoice:
    if payment.status != PaymentStatus.VERIFIED or payment.verified_at is None:
        raise ValueError(f"cannot invoice unverified payment {payment.reference}")
    return Invoice(
        invoice_number=f"INV-{payment.reference}",
        invoice_date=payment.verified_at.date(),
        items=[LineItem(description="Website Development Service", amount=payment.amount)],
        subtotal=payment.amount,
        tax=0,
        total=payment.amount,
        payment_method=payment.method,
    )


# -----------------------------
# Fraud heuristics
# -----------------------------
@dataclass(frozen=True)
class FraudRules:
    round_multiple: int = 100_000
    round_minimum: int = 500_000
    small_amount: int = 10_000
    min_age: timedelta = timedelta(seconds=30)
    max_attempts: int = 3
    attempt_window: timedelta = timedelta(hours=1)

    @classmethod
    def from_settings(cls, settings: Settings) -> "FraudRules":
        return cls(
            round_multiple=settings.FRAUD_ROUND_MULTIPLE,
            round_minimum=settings.FRAUD_ROUND_MINIMUM,
            small_amount=settings.FRAUD_SMALL_AMOUNT,
            min_age=timedelta(seconds=settings.FRAUD_MIN_AGE_SECONDS),
            max_attempts=settings.FRAUD_MAX_ATTEMPTS,
            attempt_window=timedelta(seconds=settings.FRAUD_ATTEMPT_WINDOW_SECONDS),
        )


def evaluate_fraud(payment: Payment, history: List[Payment], now: datetime, rules: FraudRules) -> List[str]:
    """Every rule that fires, in a fixed order. ``history`` is all payments for the same phone."""
    reasons = []
    if payment.amount % rules.round_multiple == 0 and payment.amount > rules.round_minimum:
        reasons.append("round_large_amount")
    if payment.amount < rules.small_amount:
        reasons.append("very_small_amount")
    if now - payment.created_at < rules.min_age:
        reasons.append("too_quick")
    recent = [p for p in history if now - p.created_at <= rules.attempt_window]
    if len(recent) > rules.max_attempts:
        reasons.append("multiple_attempts")
    return reasons


# -----------------------------
# Lifecycle
# -----------------------------
class PaymentLifecycle:
    """Sole owner of payment records and their state transitions."""

    def __init__(
        self,
        store: Optional[PaymentStore] = None,
        gateway: Optional[PaymentGatewayClient] = None,
        clock: Callable[[], datetime] = utcnow,
        rules: Optional[FraudRules] = None,
        max_amount: int = 10_000_000,
        expiry: timedelta = timedelta(hours=1),
        duplicate_window: timedelta = timedelta(seconds=1),
        qr_secret: str = "hepeco-qr",
    ):
        self.store = store if store is not None else InMemoryPaymentStore()
        self.gateway = gateway if gateway is not None else SimulatedGatewayClient()
        self.clock = clock
        self.rules = rules or FraudRules()
        self.max_amount = max_amount
        self.expiry = expiry
        self.duplicate_window = duplicate_window
        self.qr_secret = qr_secret
        self._generate_lock = asyncio.Lock()
        self._locks: Dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: Optional[PaymentStore] = None,
        gateway: Optional[PaymentGatewayClient] = None,
    ) -> "PaymentLifecycle":
        return cls(
            store=store,
            gateway=gateway,
            rules=FraudRules.from_settings(settings),
            max_amount=settings.MAX_PAYMENT_AMOUNT,
            expiry=timedelta(seconds=settings.PAYMENT_EXPIRY_SECONDS),
            duplicate_window=timedelta(seconds=settings.DUPLICATE_WINDOW_SECONDS),
            qr_secret=settings.QR_TAG_SECRET,
        )

    def _validate(self, amount, method: str, session_id: str) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("Amount must be a whole number")
        if amount <= 0 or amount > self.max_amount:
            raise ValidationError(f"Amount must be between 1 and {self.max_amount}")
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"Unsupported payment method: {method}")
        if not session_id or not session_id.strip():
            raise ValidationError("sessionId is required")

    async def generate(self, amount: int, phone: str, method: str, session_id: str) -> GeneratedPayment:
        self._validate(amount, method, session_id)
        canonical_phone = normalize_phone(phone)

        async with self._generate_lock:
            now = self.clock()
            for existing in self.store.list_by_phone(canonical_phone):
                if existing.amount == amount and abs(now - existing.created_at) < self.duplicate_window:
                    logger.warning(f"Duplicate payment request for {canonical_phone[-4:]} amount={amount}")
                    raise DuplicateRequestError()

            reference = new_reference()
            while self.store.get(reference) is not None:
                reference = new_reference()

            payment = Payment(
                reference=reference,
                amount=amount,
                phone=canonical_phone,
                method=method,
                session_id=session_id,
                created_at=now,
                expires_at=now + self.expiry,
            )
            self.store.put(payment)

        logger.info(f"Payment {reference} generated: {method} {amount}")
        return GeneratedPayment(
            reference=reference,
            qr_data=build_qr_payload(payment, self.qr_secret),
            payment=payment.model_copy(deep=True),
            instructions=payment_instructions(method, reference),
            expires_at=payment.expires_at,
        )

    def _load(self, reference: str) -> Payment:
        payment = self.store.get(reference)
        if payment is None:
            raise NotFoundError()
        return payment

    def get(self, reference: str) -> Payment:
        """Snapshot of a payment; callers never hold the stored record."""
        return self._load(reference).model_copy(deep=True)

    @asynccontextmanager
    async def _serialized(self, reference: str):
        """Hold the per-reference lock; it is dropped once the payment is resolved."""
        lock = self._locks.setdefault(reference, asyncio.Lock())
        try:
            async with lock:
                yield
        finally:
            payment = self.store.get(reference)
            if payment is not None and payment.status in TERMINAL_STATUSES and self._locks.get(reference) is lock:
                # Resolved payments are read-only, so later callers may use a fresh lock
                del self._locks[reference]

    async def verify(self, reference: str, session_id: str, phone: Optional[str] = None) -> VerificationOutcome:
        payment = self._load(reference)
        if not session_id or not hmac.compare_digest(session_id.encode(), (payment.session_id or "").encode()):
            logger.warning(f"Session mismatch verifying {reference}")
            raise SessionMismatchError()
        if phone and normalize_phone(phone) != payment.phone:
            logger.warning(f"Phone mismatch verifying {reference}")
            raise SessionMismatchError("Phone number does not match this payment")

        async with self._serialized(reference):
            payment = self._load(reference)

            if payment.status == PaymentStatus.VERIFIED:
                return VerificationOutcome(
                    success=True,
                    message=VERIFIED_MESSAGE,
                    payment=payment.model_copy(deep=True),
                    invoice=build_invoice(payment),
                )
            if payment.status == PaymentStatus.FRAUD_SUSPECTED:
                raise FraudSuspectedError(payment.fraud_reasons)

            now = self.clock()
            if now > payment.expires_at:
                logger.info(f"Verify rejected, {reference} expired at {payment.expires_at.isoformat()}")
                raise PaymentExpiredError()

            reasons = evaluate_fraud(payment, self.store.list_by_phone(payment.phone), now, self.rules)
            if reasons:
                payment.status = PaymentStatus.FRAUD_SUSPECTED
                payment.fraud_reasons = reasons
                self.store.put(payment)
                logger.warning(f"Payment {reference} flagged for review: {', '.join(reasons)}")
                raise FraudSuspectedError(reasons)

            payment.verification_attempts += 1
            result = await self.gateway.check_status(reference)

            if result.status == GatewayStatus.VERIFIED:
                payment.status = PaymentStatus.VERIFIED
                payment.verified_at = self.clock()
                payment.transaction_id = result.transaction_id
                self.store.put(payment)
                logger.info(f"Payment {reference} verified")
                return VerificationOutcome(
                    success=True,
                    message=VERIFIED_MESSAGE,
                    payment=payment.model_copy(deep=True),
                    invoice=build_invoice(payment),
                )

            if result.status == GatewayStatus.FAILED:
                payment.status = PaymentStatus.FAILED
            self.store.put(payment)
            logger.info(f"Payment {reference} not yet received (attempt {payment.verification_attempts})")
            return VerificationOutcome(success=False, message=NOT_RECEIVED_MESSAGE, payment=payment.model_copy(deep=True))

    async def apply_notification(
        self, reference: str, status: str, transaction_id: Optional[str] = None
    ) -> Optional[Payment]:
        """Apply a provider push notification. Unknown references are ignored."""
        if self.store.get(reference) is None:
            logger.warning(f"Notification for unknown reference {reference}")
            return None

        async with self._serialized(reference):
            payment = self._load(reference)
            if payment.status in TERMINAL_STATUSES:
                logger.info(f"Notification ignored, {reference} already {payment.status.value}")
                return payment.model_copy(deep=True)

            # Providers push "successful" for settled money; anything else is a failure
            if status == NOTIFICATION_SUCCESS:
                payment.status = PaymentStatus.VERIFIED
                payment.verified_at = self.clock()
            else:
                payment.status = PaymentStatus.FAILED
            if transaction_id:
                payment.transaction_id = transaction_id
            self.store.put(payment)
            logger.info(f"Notification applied to {reference}: {payment.status.value}")
            return payment.model_copy(deep=True)

    def list_payments(self) -> List[Payment]:
        return [p.model_copy(deep=True) for p in sorted(self.store.list_all(), key=lambda p: p.created_at)]

    def summary(self) -> PaymentSummary:
        payments = self.store.list_all()
        by_status = {status.value: 0 for status in PaymentStatus}
        for p in payments:
            by_status[p.status.value] += 1
        return PaymentSummary(
            total=len(payments),
            by_status=by_status,
            verified_amount=sum(p.amount for p in payments if p.status == PaymentStatus.VERIFIED),
        )
