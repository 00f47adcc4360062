import json
import unittest
from unittest import mock

from ledger_fixtures import KEY_SECRET, WEBHOOK_SECRET, LedgerTestCase, signed
from studio_credits.core.errors import InvalidArgument, InvalidSignature, PaymentNotSuccessful
from studio_credits.core.settings import settings
from studio_credits.models.credit_ledger import CreditLedger
from studio_credits.models.payment_order import PaymentOrder
from studio_credits.services import payments
from studio_credits.services.credits_engine import get_credit_balance
from studio_credits.services.razorpay import _hmac_sha256_hex


def captured_payment(**overrides) -> dict:
    payment = {
        "id": "pay_1",
        "status": "captured",
        "amount": 29900,
        "currency": "INR",
        "method": "upi",
        "email": "a@example.com",
        "contact": "+910000000000",
    }
    payment.update(overrides)
    return payment


def webhook_event(event: str, order_id: str = "order_1", **payment_fields) -> dict:
    entity = {"id": "pay_1", "order_id": order_id, "amount": 29900, "currency": "INR", "method": "card"}
    entity.update(payment_fields)
    return {"event": event, "created_at": 1700000000, "payload": {"payment": {"entity": entity}}}


class PaymentsTestCase(LedgerTestCase):
    def setUp(self) -> None:
        super().setUp()
        patcher = mock.patch.multiple(
            settings,
            razorpay_key_id="rzp_test_id",
            razorpay_key_secret=KEY_SECRET,
            razorpay_webhook_secret=WEBHOOK_SECRET,
            webhook_grants_credits=True,
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def deliver(self, event: dict):
        raw = json.dumps(event).encode("utf-8")
        return payments.reconcile_webhook(self.db, raw, _hmac_sha256_hex(WEBHOOK_SECRET, raw), event)

    def verify(self, user_id="user-1", order_id="order_1", payment_id="pay_1", package_id="popular", **payment):
        with mock.patch.object(payments.razorpay, "fetch_payment", return_value=captured_payment(**payment)):
            return payments.verify_order(
                self.db,
                user_id=user_id,
                order_id=order_id,
                payment_id=payment_id,
                signature=signed(order_id, payment_id),
                package_id=package_id,
            )


class TestVerifyOrder(PaymentsTestCase):
    def test_verified_payment_credits_package(self):
        result = self.verify()

        self.assertEqual(result.credits_added, 240)
        self.assertEqual(result.new_balance, 240)
        entry = self.db.query(CreditLedger).one()
        self.assertEqual(entry.idempotency_key, "gateway_order_order_1")
        self.assertEqual(entry.event_metadata["via"], "verify")

        order = self.db.get(PaymentOrder, "order_1")
        self.assertEqual(order.status, "captured")
        self.assertEqual(order.user_id, "user-1")
        self.assertEqual(order.payment_id, "pay_1")
        self.assertEqual(order.method, "upi")

    def test_verifying_twice_credits_once(self):
        first = self.verify()
        second = self.verify()

        self.assertFalse(first.replayed)
        self.assertTrue(second.replayed)
        self.assertEqual(second.new_balance, 240)
        self.assertEqual(self.db.query(CreditLedger).count(), 1)

    def test_tampered_signature_writes_nothing(self):
        with mock.patch.object(payments.razorpay, "fetch_payment") as fetch:
            with self.assertRaises(InvalidSignature):
                payments.verify_order(
                    self.db,
                    user_id="user-1",
                    order_id="order_2",
                    payment_id="pay_1",
                    signature=signed("order_1", "pay_1"),
                    package_id="pro",
                )
        fetch.assert_not_called()
        self.assertEqual(self.db.query(CreditLedger).count(), 0)
        self.assertIsNone(self.db.get(PaymentOrder, "order_2"))

    def test_missing_fields(self):
        with self.assertRaises(InvalidArgument):
            payments.verify_order(self.db, user_id="user-1", order_id="", payment_id="pay_1", signature="x")

    def test_unsuccessful_payment_is_not_credited(self):
        with self.assertRaises(PaymentNotSuccessful):
            self.verify(status="failed")
        self.assertEqual(self.db.query(CreditLedger).count(), 0)

    def test_authorized_payment_is_credited(self):
        result = self.verify(status="authorized")
        self.assertEqual(result.new_balance, 240)
        self.assertEqual(self.db.get(PaymentOrder, "order_1").status, "authorized")

    def test_recorded_plan_wins_over_submitted_package(self):
        payments.upsert_order(self.db, "order_1", {"user_id": "user-1", "plan_id": "credits_starter_120"})

        result = self.verify(package_id="pro")

        self.assertEqual(result.credits_added, 120)
        self.assertEqual(get_credit_balance(self.db, "user-1"), 120)

    def test_payment_below_recorded_order_amount_is_refused(self):
        payments.upsert_order(
            self.db,
            "order_1",
            {"user_id": "user-1", "plan_id": "credits_pro_480", "amount": 54900, "currency": "INR"},
        )
        with self.assertRaises(PaymentNotSuccessful):
            self.verify(package_id="pro", amount=100)
        self.assertEqual(self.db.query(CreditLedger).count(), 0)

    def test_payment_in_another_currency_is_refused(self):
        payments.upsert_order(
            self.db,
            "order_1",
            {"user_id": "user-1", "plan_id": "credits_popular_240", "amount": 29900, "currency": "INR"},
        )
        with self.assertRaises(PaymentNotSuccessful):
            self.verify(currency="USD")

    def test_oversized_plan_count_is_capped_and_priced(self):
        result = self.verify(package_id="credits_x_1000000", amount=19900)
        self.assertEqual(result.credits_added, 120)

        with self.assertRaises(PaymentNotSuccessful):
            self.verify(order_id="order_2", package_id="credits_x_1000000", amount=100)
        self.assertEqual(get_credit_balance(self.db, "user-1"), 120)

    def test_order_owned_by_another_user(self):
        payments.upsert_order(self.db, "order_1", {"user_id": "user-2", "plan_id": "pro"})
        with self.assertRaises(InvalidArgument):
            self.verify(user_id="user-1")
        self.assertEqual(get_credit_balance(self.db, "user-1"), 0)


class TestWebhook(PaymentsTestCase):
    def test_requires_valid_signature(self):
        event = webhook_event("payment.captured")
        raw = json.dumps(event).encode("utf-8")
        with self.assertRaises(InvalidArgument):
            payments.reconcile_webhook(self.db, raw, None, event)
        with self.assertRaises(InvalidSignature):
            payments.reconcile_webhook(self.db, raw, "deadbeef", event)
        self.assertEqual(self.db.query(PaymentOrder).count(), 0)

    def test_missing_order_id(self):
        event = {"event": "payment.captured", "payload": {"payment": {"entity": {"id": "pay_1"}}}}
        with self.assertRaises(InvalidArgument):
            self.deliver(event)

    def test_captured_event_records_order(self):
        result = self.deliver(webhook_event("payment.captured"))

        self.assertEqual(result.status, "captured")
        order = self.db.get(PaymentOrder, "order_1")
        self.assertEqual(order.payment_id, "pay_1")
        self.assertEqual(order.method, "card")
        self.assertEqual(order.raw_gateway_fields["event"], "payment.captured")

    def test_redelivery_keeps_single_order_and_latest_fields(self):
        self.deliver(webhook_event("payment.captured"))
        self.deliver(webhook_event("payment.captured", method="upi", email="b@example.com"))

        self.assertEqual(self.db.query(PaymentOrder).count(), 1)
        order = self.db.get(PaymentOrder, "order_1")
        self.assertEqual(order.method, "upi")
        self.assertEqual(order.email, "b@example.com")
        self.assertEqual(order.status, "captured")

    def test_terminal_status_is_not_left(self):
        self.deliver(webhook_event("payment.failed"))
        result = self.deliver(webhook_event("payment.captured"))

        self.assertEqual(result.status, "failed")
        self.assertFalse(result.credited)
        self.assertEqual(self.db.get(PaymentOrder, "order_1").status, "failed")

    def test_other_events_record_raw_status(self):
        self.deliver(webhook_event("payment.authorized"))
        self.assertEqual(self.db.get(PaymentOrder, "order_1").status, "payment.authorized")

    def test_captured_event_credits_from_notes(self):
        notes = {"uid": "user-1", "planId": "credits_popular_240"}

        first = self.deliver(webhook_event("payment.captured", notes=notes))
        second = self.deliver(webhook_event("payment.captured", notes=notes))

        self.assertTrue(first.credited)
        self.assertFalse(second.credited)
        self.assertEqual(get_credit_balance(self.db, "user-1"), 240)
        self.assertEqual(self.db.query(CreditLedger).count(), 1)

    def test_webhook_and_verify_share_one_credit(self):
        payments.upsert_order(self.db, "order_1", {"user_id": "user-1", "plan_id": "credits_popular_240"})

        self.deliver(webhook_event("payment.captured"))
        result = self.verify()

        self.assertTrue(result.replayed)
        self.assertEqual(result.new_balance, 240)
        self.assertEqual(self.db.query(CreditLedger).count(), 1)

    def test_underpaid_capture_is_recorded_but_not_credited(self):
        notes = {"uid": "user-1", "planId": "credits_pro_480"}
        result = self.deliver(webhook_event("payment.captured", notes=notes, amount=100))

        self.assertEqual(result.status, "captured")
        self.assertFalse(result.credited)
        self.assertEqual(self.db.query(CreditLedger).count(), 0)

    def test_empty_gateway_notes_keep_stored_notes(self):
        stored = {"uid": "user-1", "planId": "credits_popular_240"}
        payments.upsert_order(self.db, "order_1", {"notes": stored})

        self.deliver(webhook_event("payment.failed", notes=[]))

        self.assertEqual(self.db.get(PaymentOrder, "order_1").notes, stored)

    def test_credit_skipped_without_owner(self):
        result = self.deliver(webhook_event("payment.captured"))
        self.assertFalse(result.credited)
        self.assertEqual(self.db.query(CreditLedger).count(), 0)

    def test_crediting_can_be_disabled(self):
        notes = {"uid": "user-1", "planId": "pro"}
        with mock.patch.object(settings, "webhook_grants_credits", False):
            self.deliver(webhook_event("payment.captured", notes=notes))
        self.assertEqual(self.db.query(CreditLedger).count(), 0)


class TestCreateOrder(PaymentsTestCase):
    def test_creates_gateway_order_and_records_owner(self):
        gateway_order = {"id": "order_9", "amount": 29900, "currency": "INR", "receipt": "r1", "status": "created"}
        with mock.patch.object(payments.razorpay, "create_order", return_value=gateway_order) as create:
            out = payments.create_order(
                self.db, user_id="user-1", amount=299, plan_id="credits_popular_240", receipt="r1"
            )

        self.assertEqual(out, {"orderId": "order_9", "amount": 29900, "currency": "INR", "key": "rzp_test_id"})
        self.assertEqual(create.call_args.kwargs["amount_minor"], 29900)
        order = self.db.get(PaymentOrder, "order_9")
        self.assertEqual(order.user_id, "user-1")
        self.assertEqual(order.plan_id, "credits_popular_240")
        self.assertEqual(order.status, "created")

    def test_rejects_unknown_package_and_wrong_price(self):
        with mock.patch.object(payments.razorpay, "create_order") as create:
            with self.assertRaises(InvalidArgument):
                payments.create_order(self.db, user_id="user-1", amount=1, plan_id="credits_x_1000000")
            with self.assertRaises(InvalidArgument):
                payments.create_order(self.db, user_id="user-1", amount=1, plan_id="pro")
            with self.assertRaises(InvalidArgument):
                payments.create_order(self.db, user_id="user-1", amount=549, currency="EUR", plan_id="pro")
        create.assert_not_called()

    def test_usd_price_and_package_id_are_normalized(self):
        gateway_order = {"id": "order_u", "amount": 999, "currency": "USD", "status": "created"}
        with mock.patch.object(payments.razorpay, "create_order", return_value=gateway_order) as create:
            out = payments.create_order(self.db, user_id="user-1", amount=9.99, currency="usd", plan_id="pro")

        self.assertEqual(out["amount"], 999)
        self.assertEqual(create.call_args.kwargs["notes"], {"uid": "user-1", "planId": "credits_pro_480"})
        self.assertEqual(self.db.get(PaymentOrder, "order_u").plan_id, "credits_pro_480")

    def test_rejects_bad_amounts(self):
        for amount in (0, -5, float("nan")):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidArgument):
                    payments.create_order(self.db, user_id="user-1", amount=amount)


if __name__ == "__main__":
    unittest.main()
