"""Gateway metadata records and display helpers."""

import pytest

from settlement_kernel.domain.gateway import (
    EMPTY_DISPLAY,
    ManualMetadata,
    MpesaMetadata,
    PaystackMetadata,
    channel_display,
    format_payment_method_display,
    load_gateway_metadata,
    parse_gateway_metadata,
    to_short_reference,
    to_short_transaction_id,
)
from settlement_kernel.exceptions import InvalidGatewayMetadataError


class TestParseGatewayMetadata:
    def test_paystack_channel_from_nested_data(self):
        record = parse_gateway_metadata(
            "Paystack",
            reference_number="T123456789",
            gateway_response={"data": {"channel": "card", "status": "success"}},
        )
        assert isinstance(record, PaystackMetadata)
        assert record.channel == "card"
        assert record.channel_display == "Debit/Credit Card (Visa, Mastercard, Verve)"

    def test_paystack_unknown_channel_uses_authorization(self):
        record = parse_gateway_metadata(
            "paystack",
            transaction_id="4099260516",
            gateway_response={
                "channel": "apple_pay",
                "authorization": {"card_type": "visa"},
            },
        )
        assert record.channel_display == "visa Card"

    def test_paystack_without_identifiers(self):
        record = parse_gateway_metadata("paystack", gateway_response={"data": {"channel": "card"}})
        assert record.transaction_id is None
        assert record.reference_number is None
        assert record.channel == "card"

    def test_paystack_reference_taken_from_response(self):
        record = parse_gateway_metadata(
            "paystack",
            gateway_response={"data": {"reference": "rent_42", "channel": "bank"}},
        )
        assert record.reference_number == "rent_42"

    def test_explicit_reference_wins_over_response(self):
        record = parse_gateway_metadata(
            "paystack",
            reference_number="T1",
            gateway_response={"data": {"reference": "rent_42"}},
        )
        assert record.reference_number == "T1"

    def test_scalar_gateway_response_rejected(self):
        with pytest.raises(InvalidGatewayMetadataError) as exc_info:
            parse_gateway_metadata("paystack", reference_number="T1", gateway_response="ok")
        assert exc_info.value.gateway == "paystack"

    def test_mpesa_requires_transaction_code(self):
        with pytest.raises(InvalidGatewayMetadataError):
            parse_gateway_metadata("mpesa", phone_number="254712345678")

    def test_mpesa_record(self):
        record = parse_gateway_metadata(
            "mpesa", transaction_id="QFT12ABC34", phone_number="254712345678"
        )
        assert isinstance(record, MpesaMetadata)
        assert record.channel_display == "M-Pesa"

    def test_manual_falls_back_to_transaction_id(self):
        record = parse_gateway_metadata("manual", transaction_id="SLIP-9", received_from="Front desk")
        assert isinstance(record, ManualMetadata)
        assert record.reference_number == "SLIP-9"

    def test_unknown_gateway_rejected(self):
        with pytest.raises(InvalidGatewayMetadataError):
            parse_gateway_metadata("flutterwave", transaction_id="x")


class TestAttachmentRoundTrip:
    def test_records_survive_attachment_storage(self):
        records = [
            parse_gateway_metadata(
                "paystack",
                reference_number="T1",
                gateway_response={"data": {"channel": "bank"}},
            ),
            parse_gateway_metadata("mpesa", transaction_id="QFT1", phone_number="2547"),
            parse_gateway_metadata("manual", reference_number="CHQ-1", notes="cheque"),
        ]
        stored = [r.to_attachment() for r in records]
        assert [a["gateway"] for a in stored] == ["paystack", "mpesa", "manual"]

        assert load_gateway_metadata(stored) == records

    def test_untagged_attachments_skipped(self):
        stored = [{"url": "https://files/receipt.pdf"}, "junk", ManualMetadata("R1").to_attachment()]
        assert load_gateway_metadata(stored) == [ManualMetadata("R1")]

    def test_empty(self):
        assert load_gateway_metadata(None) == []


class TestDisplayHelpers:
    @pytest.mark.parametrize("channel,expected", [
        (None, "Online"),
        ("card", "Debit/Credit Card (Visa, Mastercard, Verve)"),
        ("mobile-money", "Mobile Money (M-Pesa, Airtel Money)"),
        ("USSD", "USSD"),
        ("pay_with_bank", "pay with bank"),
    ])
    def test_channel_display(self, channel, expected):
        assert channel_display(channel) == expected

    def test_channel_display_bank_authorization(self):
        assert channel_display("direct_debit", {"bank": "Equity"}) == "Equity Bank"

    def test_short_reference_keeps_short_values(self):
        assert to_short_reference("T123456789") == "T123456789"

    def test_short_reference_compacts_long_values(self):
        ref = "rent_c9876a68-885b-4fbd-bdf9-c7577224e05c_1768953861032"
        assert to_short_reference(ref) == "REF-53861032"

    def test_short_reference_empty(self):
        assert to_short_reference(None) == EMPTY_DISPLAY

    def test_short_transaction_id(self):
        assert to_short_transaction_id("4099260516") == "4099260516"
        assert to_short_transaction_id("trx_abcdefghijklmnop") == "TXN-ijklmnop"
        assert to_short_transaction_id("") == EMPTY_DISPLAY

    @pytest.mark.parametrize("method,expected", [
        ("cash", "Cash"),
        ("mobile_money", "Mobile Money (M-Pesa, Airtel Money)"),
        ("bank_transfer", "Bank Transfer"),
        ("cheque", "Cheque"),
        (None, EMPTY_DISPLAY),
    ])
    def test_payment_method_display(self, method, expected):
        assert format_payment_method_display(method) == expected

    def test_online_method_uses_stored_channel(self):
        attachments = [{"gateway": "paystack", "channel": "ussd"}]
        assert format_payment_method_display("online", attachments) == "USSD"

    def test_online_method_channel_from_response(self):
        attachments = [{"gateway": "paystack", "gateway_response": {"data": {"channel": "qr"}}}]
        assert format_payment_method_display("online", attachments) == "QR Code"

    def test_online_without_attachments(self):
        assert format_payment_method_display("online", []) == "Online"
