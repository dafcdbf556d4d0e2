from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase, TestCase, override_settings
from requests.exceptions import ConnectionError as RequestsConnectionError, Timeout
from rest_framework.test import APIClient

from procurement.models import GQREntry, ItemMaster, PurchaseOrder, Supplier
from tally import services as tally_service
from tally.client import TallyClient, TallyConnectionError, TallyTimeoutError
from tally.envelopes import (
    PurchaseOrderVoucher,
    parse_companies,
    parse_import_result,
    purchase_order_envelope,
)

COMPANIES_XML = """<ENVELOPE><BODY><DATA><COLLECTION>
<COMPANY NAME="Ramasamy Exports &amp; Imports Pvt.Ltd [22 - 23]">
  <COMPANYNUMBER> 10001 </COMPANYNUMBER>
</COMPANY>
<COMPANY><NAME> Second Co </NAME><COMPANYNUMBER>10002</COMPANYNUMBER></COMPANY>
<COMPANY><NAME>   </NAME><COMPANYNUMBER>10003</COMPANYNUMBER></COMPANY>
</COLLECTION></DATA></BODY></ENVELOPE>"""

IMPORT_OK_XML = "<RESPONSE><CREATED>1</CREATED><ALTERED>0</ALTERED><ERRORS>0</ERRORS></RESPONSE>"
IMPORT_FAILED_XML = (
    "<RESPONSE><CREATED>0</CREATED><ALTERED>0</ALTERED><ERRORS>1</ERRORS>"
    "<LINEERROR>Ledger 'Acme' does not exist!</LINEERROR></RESPONSE>"
)

TALLY_USER_SETTINGS = dict(
    AUTH_ENABLED=False,
    DEV_AUTH_ENABLED=True,
    DEV_AUTH_USER_ID="dev-user",
    DEV_AUTH_ROLES=["USER"],
    DEV_AUTH_PERMISSIONS=[],
    AUTH_USE_DB_RBAC=False,
    TALLY_API_URL="http://tally.test:9000",
    TALLY_ENDPOINT="http://tally.test:9000",
    TALLY_RETRIES=1,
)


def _response(status_code=200, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.reason = "OK" if response.ok else "Server Error"
    response.text = text
    return response


def _voucher(**overrides):
    values = dict(
        company="Acme & Sons",
        guid="ABC-123",
        vouchernumber="007",
        date="20240315",
        order_due_date="20240315",
        supplier_name="Kumar <Traders>",
        item_name="Onion Bellary",
        quantity="10",
        rate="25.5",
        amount="255000.00",
        primary_unit="MT",
        alt_unit="Kgs",
    )
    values.update(overrides)
    return PurchaseOrderVoucher(**values)


class EnvelopeTests(SimpleTestCase):
    def test_parse_companies_reads_attribute_and_child_names(self) -> None:
        companies = parse_companies(COMPANIES_XML)

        self.assertEqual(
            companies,
            [
                {"name": "Ramasamy Exports & Imports Pvt.Ltd [22 - 23]", "companyNumber": "10001"},
                {"name": "Second Co", "companyNumber": "10002"},
            ],
        )

    def test_parse_companies_handles_empty_collection(self) -> None:
        self.assertEqual(parse_companies("<ENVELOPE><BODY><DATA/></BODY></ENVELOPE>"), [])

    def test_purchase_order_envelope_escapes_and_balances_ledgers(self) -> None:
        envelope = purchase_order_envelope(_voucher())

        self.assertIn("<SVCURRENTCOMPANY>Acme &amp; Sons</SVCURRENTCOMPANY>", envelope)
        self.assertIn("<PARTYLEDGERNAME>Kumar &lt;Traders&gt;</PARTYLEDGERNAME>", envelope)
        self.assertIn("<AMOUNT>-255000.00</AMOUNT>", envelope)
        self.assertIn("<LEDGERNAME>Purchase Account</LEDGERNAME>", envelope)
        self.assertIn("<RATE>25.5/Kgs</RATE>", envelope)
        self.assertEqual(envelope.count("<ACTUALQTY>10 MT</ACTUALQTY>"), 2)
        self.assertIn("<BATCHNAME>007</BATCHNAME>", envelope)
        self.assertIn("<ORDERDUEDATE>20240315</ORDERDUEDATE>", envelope)

    def test_import_result_success(self) -> None:
        result = parse_import_result(IMPORT_OK_XML)

        self.assertTrue(result.ok)
        self.assertEqual(result.created, 1)

    def test_import_result_line_error_is_failure(self) -> None:
        result = parse_import_result(IMPORT_FAILED_XML)

        self.assertFalse(result.ok)
        self.assertIn("does not exist", result.describe())

    def test_import_result_without_counts_is_failure(self) -> None:
        self.assertFalse(parse_import_result("<RESPONSE/>").ok)


@override_settings(TALLY_RETRIES=1)
class TallyClientTests(SimpleTestCase):
    @patch("tally.client.requests.Session.request")
    def test_timeout_maps_to_tally_timeout(self, request_mock) -> None:
        request_mock.side_effect = Timeout("slow")

        with TallyClient("http://tally.test:9000") as client:
            with self.assertRaises(TallyTimeoutError):
                client.get(timeout=1)
        self.assertEqual(request_mock.call_count, 1)

    @patch("tally.client.time.sleep")
    @patch("tally.client.requests.Session.request")
    def test_connection_error_is_retried_for_reads(self, request_mock, sleep_mock) -> None:
        request_mock.side_effect = RequestsConnectionError("Connection refused")

        with TallyClient("http://tally.test:9000", retries=3) as client:
            with self.assertRaises(TallyConnectionError):
                client.get()
            with self.assertRaises(TallyConnectionError):
                client.post_xml("<ENVELOPE/>", read_only=True)
        self.assertEqual(request_mock.call_count, 6)
        self.assertEqual(sleep_mock.call_count, 4)

    @patch("tally.client.time.sleep")
    @patch("tally.client.requests.Session.request")
    def test_voucher_import_is_sent_once_on_timeout(self, request_mock, sleep_mock) -> None:
        request_mock.side_effect = Timeout("read timed out")

        with TallyClient("http://tally.test:9000", retries=3) as client:
            with self.assertRaises(TallyTimeoutError):
                client.post_xml("<ENVELOPE/>")
        self.assertEqual(request_mock.call_count, 1)
        sleep_mock.assert_not_called()

    @patch("tally.client.requests.Session.request")
    def test_post_sends_xml_body(self, request_mock) -> None:
        request_mock.return_value = _response(200, IMPORT_OK_XML)

        with TallyClient("http://tally.test:9000") as client:
            client.post_xml("<ENVELOPE/>", timeout=7)

        args, kwargs = request_mock.call_args
        self.assertEqual(args, ("POST", "http://tally.test:9000"))
        self.assertEqual(kwargs["data"], b"<ENVELOPE/>")
        self.assertEqual(kwargs["timeout"], 7)


@override_settings(**TALLY_USER_SETTINGS)
class TallyStatusTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    @patch("tally.client.requests.Session.request")
    def test_running(self, request_mock) -> None:
        request_mock.return_value = _response(200, "<RESPONSE>TallyPrime Server is Running</RESPONSE>")

        response = self.client.get("/api/tally/status/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "Running"})

    @patch("tally.client.requests.Session.request")
    def test_unexpected_body_is_not_running(self, request_mock) -> None:
        request_mock.return_value = _response(200, "hello")

        response = self.client.get("/api/tally/status/")

        self.assertEqual(response.json(), {"status": "Not Running"})

    @patch("tally.client.requests.Session.request")
    def test_timeout(self, request_mock) -> None:
        request_mock.side_effect = Timeout("slow")

        response = self.client.get("/api/tally/status/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"status": "Timeout", "message": "TallyPrime connection timed out."},
        )

    @patch("tally.client.requests.Session.request")
    def test_connection_refused(self, request_mock) -> None:
        request_mock.side_effect = RequestsConnectionError("[Errno 111] Connection refused")

        response = self.client.get("/api/tally/status/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "Not Running")
        self.assertEqual(
            response.json()["message"], "Connection refused. TallyPrime might not be open."
        )


@override_settings(**TALLY_USER_SETTINGS)
class TallyCompaniesTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    @patch("tally.client.requests.Session.request")
    def test_lists_companies(self, request_mock) -> None:
        request_mock.return_value = _response(200, COMPANIES_XML)

        response = self.client.get("/api/tally/companies/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()["companies"]), 2)

    @patch("tally.client.requests.Session.request")
    def test_empty_body_is_error(self, request_mock) -> None:
        request_mock.return_value = _response(200, "  ")

        response = self.client.get("/api/tally/companies/")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["companies"], [])
        self.assertEqual(response.json()["error"], "Empty response from Tally API")

    @patch("tally.client.requests.Session.request")
    def test_http_error_is_error(self, request_mock) -> None:
        request_mock.return_value = _response(503, "")

        response = self.client.get("/api/tally/companies/")

        self.assertEqual(response.status_code, 500)
        self.assertIn("503", response.json()["error"])


@override_settings(**TALLY_USER_SETTINGS)
class TallyPostPurchaseOrderTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()
        self.supplier = Supplier.objects.create(name="Kumar Traders")
        self.onion = ItemMaster.objects.create(
            item_name="Onion Bellary", item_unit="Bags", hsn_code="07031010"
        )
        self.po = PurchaseOrder.objects.create(
            vouchernumber="012",
            date=date(2024, 3, 15),
            supplier=self.supplier,
            item=self.onion,
            quantity=Decimal("10.000"),
            rate=Decimal("25.50"),
        )

    def test_voucher_uses_onion_units_and_amount(self) -> None:
        voucher = tally_service.build_purchase_order_voucher(self.po, "Acme")

        self.assertEqual(voucher.primary_unit, "MT")
        self.assertEqual(voucher.alt_unit, "Kgs")
        self.assertEqual(voucher.amount, "255000.00")
        self.assertEqual(voucher.date, "20240315")
        self.assertEqual(voucher.quantity, "10")
        self.assertEqual(voucher.guid, voucher.guid.upper())

    def test_voucher_uses_item_unit_for_other_items(self) -> None:
        garlic = ItemMaster.objects.create(item_name="Garlic", item_unit="Nos", hsn_code="0703")
        self.po.item = garlic

        voucher = tally_service.build_purchase_order_voucher(self.po, "Acme")

        self.assertEqual((voucher.primary_unit, voucher.alt_unit), ("Nos", "Nos"))

    @patch("tally.client.requests.Session.request")
    def test_post_marks_po_posted(self, request_mock) -> None:
        request_mock.return_value = _response(200, IMPORT_OK_XML)

        response = self.client.post(
            "/api/tally/post-po/", {"purchaseOrderId": self.po.id}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["message"], "Purchase Order posted to TallyPrime successfully")
        self.assertEqual(body["purchaseOrderId"], self.po.id)
        self.po.refresh_from_db()
        self.assertTrue(self.po.tally_posted)
        self.assertIsNotNone(self.po.tally_posted_at)
        self.assertEqual(self.po.tally_response, IMPORT_OK_XML)
        sent = request_mock.call_args.kwargs["data"].decode("utf-8")
        self.assertIn("Ramasamy Exports &amp; Imports Pvt.Ltd [22 - 23]", sent)

    @patch("tally.client.requests.Session.request")
    def test_rejection_returns_502_and_leaves_po_unposted(self, request_mock) -> None:
        request_mock.return_value = _response(200, IMPORT_FAILED_XML)

        response = self.client.post(
            "/api/tally/post-po/",
            {"purchaseOrderId": self.po.id, "company": "Other Co"},
            format="json",
        )

        self.assertEqual(response.status_code, 502)
        self.assertFalse(response.json()["success"])
        self.assertTrue(response.json()["error"].startswith("Failed to post to TallyPrime:"))
        self.po.refresh_from_db()
        self.assertFalse(self.po.tally_posted)

    @patch("tally.client.requests.Session.request")
    def test_transport_failure_returns_502(self, request_mock) -> None:
        request_mock.side_effect = RequestsConnectionError("Connection refused")

        response = self.client.post(
            "/api/tally/post-po/", {"purchaseOrderId": self.po.id}, format="json"
        )

        self.assertEqual(response.status_code, 502)

    @override_settings(TALLY_RETRIES=3)
    @patch("tally.client.time.sleep")
    @patch("tally.client.requests.Session.request")
    def test_timed_out_post_is_not_resent(self, request_mock, sleep_mock) -> None:
        request_mock.side_effect = Timeout("read timed out")

        response = self.client.post(
            "/api/tally/post-po/", {"purchaseOrderId": self.po.id}, format="json"
        )

        self.assertEqual(response.status_code, 502)
        self.assertEqual(request_mock.call_count, 1)
        sleep_mock.assert_not_called()
        self.po.refresh_from_db()
        self.assertFalse(self.po.tally_posted)

    def test_missing_id_is_400(self) -> None:
        response = self.client.post("/api/tally/post-po/", {}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Purchase Order ID is required")

    def test_unknown_po_is_404(self) -> None:
        response = self.client.post(
            "/api/tally/post-po/", {"purchaseOrderId": 999999}, format="json"
        )

        self.assertEqual(response.status_code, 404)

    def test_missing_hsn_is_400(self) -> None:
        self.onion.hsn_code = ""
        self.onion.save()

        response = self.client.post(
            "/api/tally/post-po/", {"purchaseOrderId": self.po.id}, format="json"
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], 'Item "Onion Bellary" is missing HSN code')

    def test_missing_unit_is_400(self) -> None:
        garlic = ItemMaster.objects.create(item_name="Garlic", item_unit=None, hsn_code="0703")
        self.po.item = garlic
        self.po.save()

        response = self.client.post(
            "/api/tally/post-po/", {"purchaseOrderId": self.po.id}, format="json"
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], 'Item "Garlic" is missing unit data')

    def test_missing_supplier_is_400(self) -> None:
        self.po.supplier = None
        self.po.save()

        response = self.client.post(
            "/api/tally/post-po/", {"purchaseOrderId": self.po.id}, format="json"
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Supplier or Item data not found")

    def test_get_is_405(self) -> None:
        response = self.client.get("/api/tally/post-po/")

        self.assertEqual(response.status_code, 405)
        self.assertEqual(
            response.json()["error"],
            "Method not allowed. Use POST to submit purchase orders to Tally.",
        )


@override_settings(**{**TALLY_USER_SETTINGS, "DEV_AUTH_ROLES": ["ADMIN"]})
class TallyFinalizeGQRTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()
        self.gqr = GQREntry.objects.create(date=date(2024, 3, 20), gqr_status="Closed")

    def test_finalize_payment(self) -> None:
        response = self.client.post(
            "/api/tally/post-gqr/", {"gqrId": self.gqr.id, "decision": "payment"}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["message"], "GQR finalized successfully as a payment.")
        self.gqr.refresh_from_db()
        self.assertEqual(self.gqr.gqr_status, "Finalized - payment")
        self.assertIsNotNone(self.gqr.finalized_at)

    def test_invalid_decision(self) -> None:
        response = self.client.post(
            "/api/tally/post-gqr/", {"gqrId": self.gqr.id, "decision": "refund"}, format="json"
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Invalid decision")

    def test_already_finalized_is_conflict(self) -> None:
        self.gqr.gqr_status = "Finalized - debit_note"
        self.gqr.save()

        response = self.client.post(
            "/api/tally/post-gqr/", {"gqrId": self.gqr.id, "decision": "payment"}, format="json"
        )

        self.assertEqual(response.status_code, 409)

    @override_settings(DEV_AUTH_ROLES=["USER"])
    def test_user_role_cannot_finalize(self) -> None:
        response = self.client.post(
            "/api/tally/post-gqr/", {"gqrId": self.gqr.id, "decision": "payment"}, format="json"
        )

        self.assertEqual(response.status_code, 403)
