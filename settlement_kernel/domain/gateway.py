"""
Gateway metadata (``settlement_kernel.domain.gateway``).

Responsibility
--------------
Typed, validated records of what a payment gateway told us about a payment.
One frozen dataclass per gateway, tagged with ``gateway``; the records are
stored as a JSON list on ``Payment.attachments`` and read back with
``load_gateway_metadata``.  Also holds the display helpers used on receipts
and payment listings (channel labels, short references).

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.

Invariants enforced
-------------------
* Paystack records may carry neither id; a reference found in the
  gateway response fills a missing ``reference_number``.
* M-Pesa records carry the M-Pesa transaction code.
* ``gateway_response`` is a mapping (or absent), never a bare scalar.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Sequence, Union

from settlement_kernel.exceptions import InvalidGatewayMetadataError
from settlement_kernel.logging_config import get_logger

logger = get_logger("domain.gateway")

PAYSTACK_CHANNEL_MAP: dict[str, str] = {
    "card": "Debit/Credit Card (Visa, Mastercard, Verve)",
    "bank": "Bank Transfer",
    "bank_transfer": "Bank Transfer",
    "eft": "Bank Transfer",
    "ach": "Bank Transfer",
    "mobile_money": "Mobile Money (M-Pesa, Airtel Money)",
    "mobilemoney": "Mobile Money (M-Pesa, Airtel Money)",
    "mpesa": "M-Pesa",
    "ussd": "USSD",
    "qr": "QR Code",
}

EMPTY_DISPLAY = "—"


# =============================================================================
# Display helpers
# =============================================================================


def _channel_key(channel: str) -> str:
    return channel.lower().replace("-", "_")


def channel_display(
    channel: str | None,
    authorization: Mapping[str, Any] | None = None,
) -> str:
    """Human-readable label for a raw gateway channel."""
    if not channel:
        return "Online"
    label = PAYSTACK_CHANNEL_MAP.get(_channel_key(channel))
    if label:
        return label
    authorization = authorization or {}
    if authorization.get("card_type"):
        return f"{authorization['card_type']} Card"
    if authorization.get("bank"):
        return f"{authorization['bank']} Bank"
    if authorization.get("brand"):
        return f"{authorization['brand']} Card"
    return channel.replace("_", " ")


def to_short_reference(ref: str | None) -> str:
    """
    Short, readable form of a long gateway reference.

    ``rent_c9876a68-885b-4fbd-bdf9-c7577224e05c_1768953861032`` becomes
    ``REF-53861032``.  References of 22 characters or fewer are kept.
    """
    if not ref or not isinstance(ref, str):
        return EMPTY_DISPLAY
    s = ref.strip()
    if len(s) <= 22:
        return s
    alnum = re.sub(r"\W", "", s)
    tail = (alnum[-8:] or s[-8:]).upper()
    return f"REF-{tail}"


def to_short_transaction_id(txn_id: str | None) -> str:
    if not txn_id or not isinstance(txn_id, str):
        return EMPTY_DISPLAY
    s = txn_id.strip()
    if len(s) <= 14:
        return s
    return f"TXN-{s[-8:]}"


def format_payment_method_display(
    payment_method: str | None,
    attachments: Sequence[Mapping[str, Any]] | None = None,
) -> str:
    """Label for a payment's method; online payments use the stored channel."""
    method = (payment_method or "").lower()
    if method != "online":
        if method == "cash":
            return "Cash"
        if method in ("mpesa", "mobile_money"):
            return PAYSTACK_CHANNEL_MAP["mobile_money"]
        if method == "bank_transfer":
            return "Bank Transfer"
        if not method:
            return EMPTY_DISPLAY
        return method[0].upper() + method[1:].replace("_", " ")

    first = attachments[0] if attachments else None
    if not isinstance(first, Mapping):
        return "Online"
    ch = first.get("channel") or first.get("channel_display")
    if not ch:
        ch = _channel_from_response(first.get("gateway_response"))
    if ch and isinstance(ch, str):
        return PAYSTACK_CHANNEL_MAP.get(_channel_key(ch), ch.replace("_", " "))
    return "Online"


def _response_section(response: Any, key: str) -> Any:
    if not isinstance(response, Mapping):
        return None
    data = response.get("data")
    if isinstance(data, Mapping) and data.get(key):
        return data[key]
    return response.get(key)


def _channel_from_response(response: Any) -> str | None:
    return _response_section(response, "channel")


def _optional_str(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


# =============================================================================
# Tagged metadata records
# =============================================================================


def _check_response(gateway: str, response: Any) -> dict[str, Any] | None:
    if response is None:
        return None
    if not isinstance(response, Mapping):
        raise InvalidGatewayMetadataError(gateway, "gateway_response must be an object")
    return dict(response)


@dataclass(frozen=True)
class PaystackMetadata:
    """Card, bank and mobile-money confirmations relayed by Paystack."""

    gateway: ClassVar[str] = "paystack"

    transaction_id: str | None = None
    reference_number: str | None = None
    channel: str | None = None
    channel_display: str = "Online"
    gateway_response: dict[str, Any] | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "gateway_response", _check_response(self.gateway, self.gateway_response)
        )

    def to_attachment(self) -> dict[str, Any]:
        return {
            "gateway": self.gateway,
            "transaction_id": self.transaction_id,
            "reference_number": self.reference_number,
            "channel": self.channel,
            "channel_display": self.channel_display,
            "gateway_response": self.gateway_response,
        }


@dataclass(frozen=True)
class MpesaMetadata:
    """STK-push / paybill confirmations from M-Pesa."""

    gateway: ClassVar[str] = "mpesa"

    transaction_id: str
    phone_number: str | None = None
    reference_number: str | None = None
    gateway_response: dict[str, Any] | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.transaction_id:
            raise InvalidGatewayMetadataError(self.gateway, "transaction_id is required")
        object.__setattr__(
            self, "gateway_response", _check_response(self.gateway, self.gateway_response)
        )

    @property
    def channel_display(self) -> str:
        return PAYSTACK_CHANNEL_MAP["mpesa"]

    def to_attachment(self) -> dict[str, Any]:
        return {
            "gateway": self.gateway,
            "transaction_id": self.transaction_id,
            "phone_number": self.phone_number,
            "reference_number": self.reference_number,
            "channel": "mpesa",
            "channel_display": self.channel_display,
            "gateway_response": self.gateway_response,
        }


@dataclass(frozen=True)
class ManualMetadata:
    """Payment recorded by staff (cash, cheque, bank slip)."""

    gateway: ClassVar[str] = "manual"

    reference_number: str | None = None
    received_from: str | None = None
    notes: str | None = None

    @property
    def channel_display(self) -> str:
        return "Manual"

    def to_attachment(self) -> dict[str, Any]:
        return {
            "gateway": self.gateway,
            "reference_number": self.reference_number,
            "received_from": self.received_from,
            "notes": self.notes,
        }


GatewayMetadata = Union[PaystackMetadata, MpesaMetadata, ManualMetadata]

GATEWAYS: tuple[str, ...] = (
    PaystackMetadata.gateway,
    MpesaMetadata.gateway,
    ManualMetadata.gateway,
)


def parse_gateway_metadata(
    gateway: str,
    *,
    transaction_id: str | None = None,
    reference_number: str | None = None,
    gateway_response: Any = None,
    phone_number: str | None = None,
    received_from: str | None = None,
    notes: str | None = None,
) -> GatewayMetadata:
    """
    Build the typed record for ``gateway`` from normalized payment facts.

    Raises:
        InvalidGatewayMetadataError: Unknown gateway or invalid payload.
    """
    key = (gateway or "").strip().lower()

    if key == PaystackMetadata.gateway:
        response = _check_response(key, gateway_response)
        channel = _channel_from_response(response)
        authorization = _response_section(response, "authorization")
        response_reference = _response_section(response, "reference")
        return PaystackMetadata(
            transaction_id=transaction_id,
            reference_number=reference_number or _optional_str(response_reference),
            channel=channel,
            channel_display=channel_display(
                channel, authorization if isinstance(authorization, Mapping) else None
            ),
            gateway_response=response,
        )

    if key == MpesaMetadata.gateway:
        return MpesaMetadata(
            transaction_id=transaction_id or "",
            phone_number=phone_number,
            reference_number=reference_number,
            gateway_response=gateway_response,
        )

    if key == ManualMetadata.gateway:
        return ManualMetadata(
            reference_number=reference_number or transaction_id,
            received_from=received_from,
            notes=notes,
        )

    raise InvalidGatewayMetadataError(gateway, f"unsupported gateway, expected one of {GATEWAYS}")


def load_gateway_metadata(attachments: Sequence[Mapping[str, Any]] | None) -> list[GatewayMetadata]:
    """Read typed records back from a stored ``attachments`` list.

    Entries without a known ``gateway`` tag (e.g. uploaded receipts) are skipped.
    """
    records: list[GatewayMetadata] = []
    for entry in attachments or ():
        if not isinstance(entry, Mapping):
            continue
        tag = entry.get("gateway")
        if tag == PaystackMetadata.gateway:
            records.append(PaystackMetadata(
                transaction_id=entry.get("transaction_id"),
                reference_number=entry.get("reference_number"),
                channel=entry.get("channel"),
                channel_display=entry.get("channel_display") or "Online",
                gateway_response=entry.get("gateway_response"),
            ))
        elif tag == MpesaMetadata.gateway:
            records.append(MpesaMetadata(
                transaction_id=entry.get("transaction_id") or "",
                phone_number=entry.get("phone_number"),
                reference_number=entry.get("reference_number"),
                gateway_response=entry.get("gateway_response"),
            ))
        elif tag == ManualMetadata.gateway:
            records.append(ManualMetadata(
                reference_number=entry.get("reference_number"),
                received_from=entry.get("received_from"),
                notes=entry.get("notes"),
            ))
        else:
            logger.debug("attachment_without_gateway_tag", extra={"tag": tag})
    return records
