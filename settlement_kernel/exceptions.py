"""
Typed exception hierarchy for the settlement kernel.

Every error carries a class-level ``code`` (machine-readable, API-safe) and
stores its context as attributes rather than only in the message, so callers
catch by type and read structured data instead of parsing strings.

    SettlementKernelError (base)
    |
    +-- ValidationError                 -- malformed input, no side effects
    |   +-- InvalidInvoiceSelectionError
    |   +-- InvalidAmountError
    |   +-- InvalidGatewayMetadataError
    |
    +-- NotFoundError                   -- entity absent, no side effects
    |   +-- PaymentNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- TenantNotFoundError
    |
    +-- ForbiddenError                  -- role / scope / ownership mismatch
    |
    +-- ConflictError                   -- invalid state for the operation
    |   +-- InvalidPaymentTransitionError
    |   +-- PaymentImmutableError
    |   +-- InvoiceAlreadySettledError
    |   +-- PaymentAlreadyLinkedError
    |   +-- DuplicateReceiptNumberError
    |
    +-- TransactionError                -- store failure, batch rolled back
        +-- SettlementTransactionError
        +-- SequenceAllocationError

Category semantics:
    ValidationError  -> reject the request, caller fixes input
    NotFoundError    -> reject the request
    ForbiddenError   -> reject the request, audit-logged by the policy filter
    ConflictError    -> caller refreshes state and retries if appropriate
    TransactionError -> whole unit of work rolled back, safe to retry
"""


class SettlementKernelError(Exception):
    """Base exception for all settlement kernel errors."""

    code: str = "SETTLEMENT_KERNEL_ERROR"


# Validation


class ValidationError(SettlementKernelError):
    """Missing or malformed fields."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidInvoiceSelectionError(ValidationError):
    """Settlement request does not name a usable set of invoices."""

    code: str = "INVALID_INVOICE_SELECTION"

    def __init__(self, reason: str, invalid_ids: tuple[str, ...] = ()):
        self.reason = reason
        self.invalid_ids = invalid_ids
        super().__init__(reason, field="invoice_ids")


class InvalidAmountError(ValidationError):
    """Monetary amount is not a positive decimal."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: str):
        self.amount = amount
        super().__init__(f"Amount must be a positive decimal, got {amount}", field="amount")


class InvalidGatewayMetadataError(ValidationError):
    """Gateway payload does not match the schema for its gateway."""

    code: str = "INVALID_GATEWAY_METADATA"

    def __init__(self, gateway: str, reason: str):
        self.gateway = gateway
        self.reason = reason
        super().__init__(f"Invalid {gateway} metadata: {reason}", field="gateway_response")


# Not found


class NotFoundError(SettlementKernelError):
    """Base exception for absent entities."""

    code: str = "NOT_FOUND"


class PaymentNotFoundError(NotFoundError):
    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


class InvoiceNotFoundError(NotFoundError):
    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class TenantNotFoundError(NotFoundError):
    code: str = "TENANT_NOT_FOUND"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant not found: {tenant_id}")


# Forbidden


class ForbiddenError(SettlementKernelError):
    """Actor's role or scope does not permit the action."""

    code: str = "FORBIDDEN"

    def __init__(self, action: str, reason: str):
        self.action = action
        self.reason = reason
        super().__init__(f"Forbidden: {action} ({reason})")


# Conflict


class ConflictError(SettlementKernelError):
    """Operation is invalid for the current state of the entity."""

    code: str = "CONFLICT"

    def __init__(self, message: str, current_state: str | None = None):
        self.current_state = current_state
        super().__init__(message)


class InvalidPaymentTransitionError(ConflictError):
    """No declared transition for this action from the payment's status."""

    code: str = "INVALID_PAYMENT_TRANSITION"

    def __init__(self, payment_id: str, current_status: str, action: str):
        self.payment_id = payment_id
        self.action = action
        super().__init__(
            f"Cannot {action} payment {payment_id} in status '{current_status}'",
            current_state=current_status,
        )


class PaymentImmutableError(ConflictError):
    """Approved and completed payments cannot be deleted."""

    code: str = "PAYMENT_IMMUTABLE"

    def __init__(self, payment_id: str, current_status: str):
        self.payment_id = payment_id
        super().__init__(
            f"Cannot delete payment {payment_id} in status '{current_status}'",
            current_state=current_status,
        )


class InvoiceAlreadySettledError(ConflictError):
    """Invoice is already paid."""

    code: str = "INVOICE_ALREADY_SETTLED"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is already paid", current_state="paid")


class PaymentAlreadyLinkedError(ConflictError):
    """Payment references a different invoice already."""

    code: str = "PAYMENT_ALREADY_LINKED"

    def __init__(self, payment_id: str, linked_invoice_id: str):
        self.payment_id = payment_id
        self.linked_invoice_id = linked_invoice_id
        super().__init__(
            f"Payment {payment_id} is already linked to invoice {linked_invoice_id}"
        )


class DuplicateReceiptNumberError(ConflictError):
    """Receipt number is already used within the company."""

    code: str = "DUPLICATE_RECEIPT_NUMBER"

    def __init__(self, company_id: str, receipt_number: str):
        self.company_id = company_id
        self.receipt_number = receipt_number
        super().__init__(
            f"Receipt number {receipt_number} already exists for company {company_id}"
        )


# Transaction


class TransactionError(SettlementKernelError):
    """Store-level failure; the unit of work was rolled back."""

    code: str = "TRANSACTION_ERROR"


class SettlementTransactionError(TransactionError):
    """Settlement batch failed and was rolled back as a whole."""

    code: str = "SETTLEMENT_FAILED"

    def __init__(self, invoice_ids: tuple[str, ...], reason: str):
        self.invoice_ids = invoice_ids
        self.reason = reason
        super().__init__(f"Settlement failed for {len(invoice_ids)} invoice(s): {reason}")


class SequenceAllocationError(TransactionError):
    """Counter row could not be allocated."""

    code: str = "SEQUENCE_ALLOCATION_FAILED"

    def __init__(self, sequence_name: str, reason: str):
        self.sequence_name = sequence_name
        self.reason = reason
        super().__init__(f"Could not allocate sequence {sequence_name}: {reason}")
