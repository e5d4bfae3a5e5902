"""
ReceiptNumberGenerator -- per-company receipt numbers.

Responsibility:
    Issues receipt numbers of the form ``RCT-YYMM-NNNN``.  ``YYMM`` comes
    from the injected clock; ``NNNN`` is the company's counter from
    SequenceService, zero-padded to at least four digits.  The counter never
    resets, so the number stays unique across months.

    Also owns the placeholder convention for invoice-issuance payments:
    ``PENDING-<invoice_number>``.

Architecture position:
    Kernel > Services.  Used by PaymentStore, SettlementOrchestrator and
    ReconciliationService inside their caller's transaction.

Invariants enforced:
    - Uniqueness comes from the locked counter row, never from wall-clock
      or random suffixes.  Values whose number a payment of the company
      already holds are skipped.
    - Callers may not supply numbers in the generator's own range
      (``is_reserved``).
    - The increment shares the payment insert's transaction; a rollback of
      the payment returns the number.

Failure modes:
    - SequenceAllocationError propagates and aborts the enclosing
      transaction.  No partial receipt is issued.
"""

import re
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.payment import Payment
from settlement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.receipt_numbers")

DEFAULT_RECEIPT_PREFIX = "RCT"
DEFAULT_PLACEHOLDER_PREFIX = "PENDING-"

_RECEIPT_RE = re.compile(r"^(?P<prefix>[A-Z]+)-(?P<yy>\d{2})(?P<mm>\d{2})-(?P<seq>\d{4,})$")


@dataclass(frozen=True)
class ParsedReceiptNumber:
    prefix: str
    year: int
    month: int
    sequence: int


def parse_receipt_number(receipt_number: str) -> ParsedReceiptNumber | None:
    """Split ``RCT-2401-0042`` into its parts; None for other formats."""
    match = _RECEIPT_RE.match(receipt_number or "")
    if match is None:
        return None
    return ParsedReceiptNumber(
        prefix=match["prefix"],
        year=2000 + int(match["yy"]),
        month=int(match["mm"]),
        sequence=int(match["seq"]),
    )


class ReceiptNumberGenerator:
    """
    Allocates receipt numbers inside the caller's transaction.

    A counter value whose number is already held by a payment of the same
    company (imported history, numbers typed in before the prefix was
    reserved) is passed over, so allocation never collides.

    Non-goals:
        - Does NOT commit.  A number is consumed only when the caller's
          transaction commits.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        prefix: str = DEFAULT_RECEIPT_PREFIX,
        placeholder_prefix: str = DEFAULT_PLACEHOLDER_PREFIX,
    ):
        self._session = session
        self._sequences = SequenceService(session)
        self._clock = clock or SystemClock()
        self._prefix = prefix
        self._placeholder_prefix = placeholder_prefix

    @property
    def placeholder_prefix(self) -> str:
        return self._placeholder_prefix

    def next_receipt_number(self, company_id: UUID) -> str:
        """Allocate the next unused receipt number for ``company_id``."""
        sequence = SequenceService.receipt_sequence(company_id)
        while True:
            seq = self._sequences.next_value(sequence)
            receipt_number = f"{self._prefix}-{self._clock.now():%y%m}-{seq:04d}"
            if not self.in_use(company_id, receipt_number):
                break
            logger.warning(
                "receipt_number_skipped",
                extra={"company_id": str(company_id), "receipt_number": receipt_number},
            )
        logger.debug(
            "receipt_number_allocated",
            extra={
                "company_id": str(company_id),
                "receipt_number": receipt_number,
                "sequence": seq,
            },
        )
        return receipt_number

    def in_use(self, company_id: UUID, receipt_number: str) -> bool:
        return self._session.execute(
            select(Payment.id).where(
                Payment.company_id == company_id,
                Payment.receipt_number == receipt_number,
            )
        ).first() is not None

    def is_reserved(self, receipt_number: str | None) -> bool:
        """True for numbers in this generator's own ``PREFIX-YYMM-NNNN`` range."""
        parsed = parse_receipt_number(receipt_number or "")
        return parsed is not None and parsed.prefix == self._prefix

    def is_placeholder(self, receipt_number: str | None) -> bool:
        return bool(receipt_number) and receipt_number.startswith(self._placeholder_prefix)

    def placeholder_for(self, invoice_number: str) -> str:
        return f"{self._placeholder_prefix}{invoice_number}"
