from datetime import date
from decimal import Decimal
from io import BytesIO

from django.test import SimpleTestCase, TestCase, override_settings
from openpyxl import load_workbook
from rest_framework.test import APIClient

from procurement import rules
from procurement.models import GapItem, GQREntry, ItemMaster, PreGREntry, PurchaseOrder, Supplier
from procurement.services import gqr as gqr_service
from procurement.services import purchase_orders as po_service
from procurement.services.errors import ProcurementError
from procurement.services.formatting import (
    format_date_ddmmyyyy,
    number_to_words,
    parse_ddmmyyyy,
    parse_flexible_date,
    to_decimal,
)
from procurement.services.gqr import calculate_gqr_figures

AUTH_SETTINGS = dict(
    AUTH_ENABLED=False,
    DEV_AUTH_ENABLED=True,
    DEV_AUTH_USER_ID="dev-user",
    DEV_AUTH_PERMISSIONS=[],
    AUTH_USE_DB_RBAC=False,
    EXPORT_API_TOKEN="",
)
USER_SETTINGS = {**AUTH_SETTINGS, "DEV_AUTH_ROLES": ["USER"]}
ADMIN_SETTINGS = {**AUTH_SETTINGS, "DEV_AUTH_ROLES": ["ADMIN"]}


def _seed_purchase_order(vouchernumber="001", **overrides):
    supplier = overrides.pop("supplier", None) or Supplier.objects.create(name="Kumar Traders")
    item = overrides.pop("item", None) or ItemMaster.objects.create(
        item_name="Onion Bellary", item_unit="MT", hsn_code="07031010"
    )
    values = dict(
        vouchernumber=vouchernumber,
        date=date(2024, 3, 15),
        supplier=supplier,
        item=item,
        quantity=Decimal("10.000"),
        rate=Decimal("20.00"),
        cargo=Decimal("85.00"),
        damage_allowed_kgs_ton=Decimal("50.000"),
        podi_rate=Decimal("5.00"),
    )
    values.update(overrides)
    return PurchaseOrder.objects.create(**values)


def _seed_pre_gr(po, approved=True, **overrides):
    values = dict(
        po=po,
        vouchernumber=po.vouchernumber,
        date=date(2024, 3, 16),
        supplier=po.supplier,
        item=po.item,
        quantity=po.quantity,
        rate=po.rate,
        cargo=po.cargo,
        damage_allowed=po.damage_allowed_kgs_ton,
        ladden_wt=Decimal("12000.000"),
        empty_wt=Decimal("2000.000"),
        net_wt=Decimal("10000.000"),
        gr_no="GR-17",
        gr_dt=date(2024, 3, 16),
        vehicle_no="TN 45 AB 1234",
        is_admin_approved=approved,
    )
    values.update(overrides)
    return PreGREntry.objects.create(**values)


GQR_DEDUCTIONS = {
    "rot_weight": "200",
    "doubles_weight": "100",
    "sand_weight": "50",
    "weight_shortage": "0",
    "gap_items_weight": "500",
    "podi_weight": "300",
}


# =============================================================================
# Pure helpers
# =============================================================================

class FormattingTests(SimpleTestCase):
    def test_format_date(self) -> None:
        self.assertEqual(format_date_ddmmyyyy(date(2024, 3, 5)), "05/03/2024")
        self.assertEqual(format_date_ddmmyyyy("2024-03-05"), "05/03/2024")
        self.assertEqual(format_date_ddmmyyyy("2024-03-05T10:30:00Z"), "05/03/2024")

    def test_format_date_invalid_is_empty(self) -> None:
        self.assertEqual(format_date_ddmmyyyy(None), "")
        self.assertEqual(format_date_ddmmyyyy("not a date"), "")
        self.assertEqual(format_date_ddmmyyyy("2024-13-45"), "")

    def test_parse_ddmmyyyy(self) -> None:
        self.assertEqual(parse_ddmmyyyy("05/03/2024"), date(2024, 3, 5))
        self.assertIsNone(parse_ddmmyyyy("31/02/2024"))
        self.assertIsNone(parse_ddmmyyyy("2024-03-05"))
        self.assertIsNone(parse_ddmmyyyy("5/3"))
        self.assertIsNone(parse_ddmmyyyy(None))

    def test_parse_flexible_date_accepts_both_forms(self) -> None:
        self.assertEqual(parse_flexible_date("2024-03-05"), date(2024, 3, 5))
        self.assertEqual(parse_flexible_date("05/03/2024"), date(2024, 3, 5))
        self.assertIsNone(parse_flexible_date("March 5"))

    def test_number_to_words_indian_scales(self) -> None:
        self.assertEqual(
            number_to_words(150250.5),
            "One Lakh Fifty Thousand Two Hundred and Fifty Rupees and Fifty Paise Only",
        )
        self.assertEqual(
            number_to_words(Decimal("12345678")),
            "One Crore Twenty Three Lakh Forty Five Thousand Six Hundred and Seventy Eight Rupees Only",
        )
        self.assertEqual(number_to_words(1000000000), "One Billion Rupees Only")

    def test_number_to_words_edges(self) -> None:
        self.assertEqual(number_to_words(0), "Zero Rupees Only")
        self.assertEqual(number_to_words(0.75), "Rupees and Seventy Five Paise Only")
        self.assertEqual(number_to_words(15), "Fifteen Rupees Only")
        self.assertEqual(number_to_words("abc"), "")
        self.assertEqual(number_to_words(None), "")

    def test_to_decimal(self) -> None:
        self.assertEqual(to_decimal(" 12.5 ", "rate"), Decimal("12.5"))
        self.assertIsNone(to_decimal("", "rate"))
        with self.assertRaises(ProcurementError) as ctx:
            to_decimal("twelve", "rate")
        self.assertEqual(ctx.exception.field, "rate")
        self.assertEqual(ctx.exception.http_status, 400)


class ProcurementErrorTests(SimpleTestCase):
    def test_status_mapping(self) -> None:
        self.assertEqual(ProcurementError("x", code="not_found").http_status, 404)
        self.assertEqual(ProcurementError("x", code="po_closed").http_status, 409)
        self.assertEqual(ProcurementError("x", code="finalized").http_status, 409)
        self.assertEqual(ProcurementError("x", code="required").http_status, 400)

    def test_errors_keyed_by_field_then_code(self) -> None:
        self.assertEqual(ProcurementError("m", code="c", field="f").as_errors(), {"f": "m"})
        self.assertEqual(ProcurementError("m", code="c").as_errors(), {"c": "m"})


class GQRCalculationTests(SimpleTestCase):
    def test_export_is_net_minus_deductions(self) -> None:
        figures = calculate_gqr_figures(
            Decimal("10000"),
            po_rate=Decimal("20"),
            podi_rate=Decimal("5"),
            **{key: Decimal(value) for key, value in GQR_DEDUCTIONS.items()},
        )

        self.assertEqual(figures.export_quality_weight, Decimal("8850"))
        self.assertEqual(figures.total_wastage_weight, Decimal("350"))
        self.assertEqual(figures.total_value_received, Decimal("188500.00"))
        self.assertEqual(figures.yield_percentage, Decimal("88.50"))
        self.assertEqual(figures.weight_difference, Decimal("0"))
        self.assertFalse(figures.is_over_accounted)

    def test_gap_rate_overrides_po_rate(self) -> None:
        figures = calculate_gqr_figures(
            Decimal("1000"), gap_items_weight=Decimal("100"), po_rate=Decimal("20"), gap_rate=Decimal("8")
        )

        self.assertEqual(figures.total_value_received, Decimal("18800.00"))

    def test_zero_net_has_zero_yield(self) -> None:
        figures = calculate_gqr_figures(Decimal("0"))

        self.assertEqual(figures.yield_percentage, Decimal("0"))

    def test_explicit_export_over_net_is_over_accounted(self) -> None:
        figures = calculate_gqr_figures(
            Decimal("1000"), rot_weight=Decimal("100"), export_quality_weight=Decimal("950")
        )

        self.assertEqual(figures.weight_difference, Decimal("-50"))
        self.assertTrue(figures.is_over_accounted)

    def test_rounding_noise_is_tolerated(self) -> None:
        figures = calculate_gqr_figures(
            Decimal("1000"), rot_weight=Decimal("100"), export_quality_weight=Decimal("900.005")
        )

        self.assertFalse(figures.is_over_accounted)

    def test_deductions_beyond_net_are_over_accounted(self) -> None:
        figures = calculate_gqr_figures(Decimal("1000"), rot_weight=Decimal("1200"))

        self.assertTrue(figures.is_over_accounted)


# =============================================================================
# Master data
# =============================================================================

@override_settings(**USER_SETTINGS)
class MasterDataApiTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    def test_create_and_list_suppliers(self) -> None:
        response = self.client.post(
            "/api/procurement/masters/suppliers/",
            {"name": "  Kumar Traders ", "phone": "98400 00000"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["name"], "Kumar Traders")

        listing = self.client.get("/api/procurement/masters/suppliers/", {"search": "kumar"})
        self.assertEqual(listing.status_code, 200)
        self.assertEqual(listing.json()["count"], 1)

    def test_items_use_uuid_ids(self) -> None:
        response = self.client.post(
            "/api/procurement/masters/items/",
            {"item_name": "Onion Bellary", "item_unit": "MT", "hsn_code": "07031010"},
            format="json",
        )
        item_id = response.json()["id"]

        detail = self.client.get(f"/api/procurement/masters/items/{item_id}/")
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.json()["hsn_code"], "07031010")

    def test_required_field(self) -> None:
        response = self.client.post("/api/procurement/masters/gap-items/", {"name": ""}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("name", response.json()["errors"])

    def test_unknown_field_rejected(self) -> None:
        response = self.client.post(
            "/api/procurement/masters/suppliers/", {"name": "X", "gstin": "1"}, format="json"
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("gstin", response.json()["errors"])

    def test_unknown_kind_is_404(self) -> None:
        response = self.client.get("/api/procurement/masters/warehouses/")

        self.assertEqual(response.status_code, 404)

    def test_patch_updates_only_sent_fields(self) -> None:
        supplier = Supplier.objects.create(name="Kumar", phone="1")

        response = self.client.patch(
            f"/api/procurement/masters/suppliers/{supplier.id}/", {"phone": "2"}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["name"], "Kumar")
        self.assertEqual(response.json()["phone"], "2")

    def test_delete_in_use_supplier_is_conflict(self) -> None:
        po = _seed_purchase_order()

        response = self.client.delete(f"/api/procurement/masters/suppliers/{po.supplier_id}/")

        self.assertEqual(response.status_code, 409)
        self.assertTrue(Supplier.objects.filter(id=po.supplier_id).exists())

    def test_delete_unused_unit(self) -> None:
        created = self.client.post(
            "/api/procurement/masters/units/",
            {"quantity": "Kilograms", "uqc_code": "KGS"},
            format="json",
        ).json()

        response = self.client.delete(f"/api/procurement/masters/units/{created['id']}/")

        self.assertEqual(response.status_code, 204)

    @override_settings(DEV_AUTH_ROLES=[])
    def test_no_role_is_forbidden(self) -> None:
        response = self.client.get("/api/procurement/masters/suppliers/")

        self.assertEqual(response.status_code, 403)


# =============================================================================
# Purchase orders
# =============================================================================

class VoucherNumberTests(TestCase):
    def test_first_voucher(self) -> None:
        self.assertEqual(po_service.next_voucher_number(), "001")

    def test_numeric_maximum_plus_one(self) -> None:
        supplier = Supplier.objects.create(name="S")
        item = ItemMaster.objects.create(item_name="Onion")
        _seed_purchase_order("009", supplier=supplier, item=item)
        _seed_purchase_order("ABC-1", supplier=supplier, item=item)
        _seed_purchase_order("002", supplier=supplier, item=item)

        self.assertEqual(po_service.next_voucher_number(), "010")

    def test_width_grows_past_padding(self) -> None:
        _seed_purchase_order("999")

        self.assertEqual(po_service.next_voucher_number(), "1000")


@override_settings(**USER_SETTINGS)
class PurchaseOrderApiTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()
        self.supplier = Supplier.objects.create(name="Kumar Traders")
        self.item = ItemMaster.objects.create(item_name="Onion Bellary", item_unit="MT", hsn_code="0703")

    def _payload(self, **overrides):
        payload = {
            "date": "15/03/2024",
            "supplier_id": self.supplier.id,
            "item_id": str(self.item.id),
            "quantity": "10",
            "rate": "20.50",
            "cargo": "85",
            "damage_allowed_kgs_ton": "50",
            "podi_rate": "5",
        }
        payload.update(overrides)
        return payload

    def test_create_assigns_voucher_number(self) -> None:
        first = self.client.post("/api/procurement/purchase-orders/", self._payload(), format="json")
        second = self.client.post("/api/procurement/purchase-orders/", self._payload(), format="json")

        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.json()["vouchernumber"], "001")
        self.assertEqual(second.json()["vouchernumber"], "002")
        self.assertEqual(first.json()["date"], "2024-03-15")
        self.assertEqual(first.json()["supplier_name"], "Kumar Traders")

    def test_next_voucher_endpoint(self) -> None:
        _seed_purchase_order("004", supplier=self.supplier, item=self.item)

        response = self.client.get("/api/procurement/purchase-orders/next-voucher/")

        self.assertEqual(response.json(), {"vouchernumber": "005"})

    def test_duplicate_requested_voucher_is_conflict(self) -> None:
        _seed_purchase_order("007", supplier=self.supplier, item=self.item)

        response = self.client.post(
            "/api/procurement/purchase-orders/", self._payload(vouchernumber="007"), format="json"
        )

        self.assertEqual(response.status_code, 409)
        self.assertIn("vouchernumber", response.json()["errors"])

    def test_missing_required_fields(self) -> None:
        response = self.client.post(
            "/api/procurement/purchase-orders/", self._payload(item_id=""), format="json"
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["errors"], {"required": "Please fill all required fields."})

    def test_invalid_date(self) -> None:
        response = self.client.post(
            "/api/procurement/purchase-orders/", self._payload(date="31/02/2024"), format="json"
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()["errors"]["date"], "Please enter a valid date in DD/MM/YYYY format."
        )

    def test_unknown_supplier(self) -> None:
        response = self.client.post(
            "/api/procurement/purchase-orders/", self._payload(supplier_id=99999), format="json"
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("supplier_id", response.json()["errors"])

    def test_list_filters(self) -> None:
        open_po = _seed_purchase_order("001", supplier=self.supplier, item=self.item)
        _seed_purchase_order("002", supplier=self.supplier, item=self.item, po_closed=True)

        response = self.client.get("/api/procurement/purchase-orders/", {"open": "true"})

        self.assertEqual(response.json()["count"], 1)
        self.assertEqual(response.json()["results"][0]["id"], open_po.id)

    def test_invalid_bool_filter(self) -> None:
        response = self.client.get("/api/procurement/purchase-orders/", {"open": "maybe"})

        self.assertEqual(response.status_code, 400)

    def test_update(self) -> None:
        po = _seed_purchase_order("001", supplier=self.supplier, item=self.item)

        response = self.client.patch(
            f"/api/procurement/purchase-orders/{po.id}/", {"rate": "22.75"}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        po.refresh_from_db()
        self.assertEqual(po.rate, Decimal("22.75"))

    def test_closed_po_is_read_only(self) -> None:
        po = _seed_purchase_order("001", supplier=self.supplier, item=self.item, po_closed=True)

        update = self.client.patch(
            f"/api/procurement/purchase-orders/{po.id}/", {"rate": "1"}, format="json"
        )
        delete = self.client.delete(f"/api/procurement/purchase-orders/{po.id}/")

        self.assertEqual(update.status_code, 409)
        self.assertEqual(delete.status_code, 409)

    def test_delete_with_pre_gr_is_conflict(self) -> None:
        po = _seed_purchase_order("001", supplier=self.supplier, item=self.item)
        _seed_pre_gr(po)

        response = self.client.delete(f"/api/procurement/purchase-orders/{po.id}/")

        self.assertEqual(response.status_code, 409)

    def test_unknown_po_is_404(self) -> None:
        response = self.client.get("/api/procurement/purchase-orders/424242/")

        self.assertEqual(response.status_code, 404)

    def test_user_cannot_close(self) -> None:
        po = _seed_purchase_order("001", supplier=self.supplier, item=self.item)

        response = self.client.post(f"/api/procurement/purchase-orders/{po.id}/close/", {}, format="json")

        self.assertEqual(response.status_code, 403)

    @override_settings(DEV_AUTH_ROLES=["ADMIN"])
    def test_admin_closes_with_remark(self) -> None:
        po = _seed_purchase_order("001", supplier=self.supplier, item=self.item)

        response = self.client.post(
            f"/api/procurement/purchase-orders/{po.id}/close/",
            {"admin_remark": "Supplier short-shipped"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["po_closed"])
        self.assertEqual(response.json()["admin_remark"], "Supplier short-shipped")

        again = self.client.post(f"/api/procurement/purchase-orders/{po.id}/close/", {}, format="json")
        self.assertEqual(again.status_code, 409)


# =============================================================================
# Pre-GR
# =============================================================================

@override_settings(**USER_SETTINGS)
class PreGRApiTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()
        self.po = _seed_purchase_order()
        self.gap_item = GapItem.objects.create(name="Small Onion")

    def test_create_copies_po_terms_and_computes_net(self) -> None:
        response = self.client.post(
            "/api/procurement/pre-gr/",
            {
                "po_id": self.po.id,
                "gr_no": "GR-1",
                "vehicle_no": "TN 45 AB 1234",
                "ladden_wt": "12500",
                "empty_wt": "2400",
                "weight_shortage": "100",
                "bags": "200",
                "gap_item1_id": str(self.gap_item.id),
                "gr_dt": "16/03/2024",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["net_wt"], 10000.0)
        self.assertEqual(body["rate"], 20.0)
        self.assertEqual(body["vouchernumber"], "001")
        self.assertEqual(body["gap_item1"]["name"], "Small Onion")
        self.assertEqual(body["gr_dt"], "2024-03-16")
        self.assertFalse(body["is_admin_approved"])

    def test_create_requires_gr_and_vehicle(self) -> None:
        response = self.client.post(
            "/api/procurement/pre-gr/", {"po_id": self.po.id, "gr_no": "GR-1"}, format="json"
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("vehicle_no", response.json()["errors"])

    def test_create_against_closed_po_is_conflict(self) -> None:
        self.po.po_closed = True
        self.po.save()

        response = self.client.post(
            "/api/procurement/pre-gr/",
            {"po_id": self.po.id, "gr_no": "GR-1", "vehicle_no": "V"},
            format="json",
        )

        self.assertEqual(response.status_code, 409)

    def test_update_recomputes_net(self) -> None:
        entry = _seed_pre_gr(self.po, approved=False)

        response = self.client.patch(
            f"/api/procurement/pre-gr/{entry.id}/", {"empty_wt": "3000"}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["net_wt"], 9000.0)

    def test_entry_with_gqr_is_locked(self) -> None:
        entry = _seed_pre_gr(self.po, is_gqr_created=True)

        update = self.client.patch(f"/api/procurement/pre-gr/{entry.id}/", {"bags": 5}, format="json")
        delete = self.client.delete(f"/api/procurement/pre-gr/{entry.id}/")

        self.assertEqual(update.status_code, 409)
        self.assertEqual(delete.status_code, 409)

    def test_user_cannot_approve(self) -> None:
        entry = _seed_pre_gr(self.po, approved=False)

        response = self.client.post(f"/api/procurement/pre-gr/{entry.id}/approve/", {}, format="json")

        self.assertEqual(response.status_code, 403)

    @override_settings(DEV_AUTH_ROLES=["ADMIN"])
    def test_admin_approves_with_advance(self) -> None:
        entry = _seed_pre_gr(self.po, approved=False)

        response = self.client.post(
            f"/api/procurement/pre-gr/{entry.id}/approve/",
            {"admin_remark": "ok", "admin_approved_advance": "50000"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        entry.refresh_from_db()
        self.assertTrue(entry.is_admin_approved)
        self.assertEqual(entry.admin_approved_advance, Decimal("50000.00"))

    def test_eligible_for_gqr(self) -> None:
        eligible = _seed_pre_gr(self.po)
        _seed_pre_gr(self.po, approved=False, gr_no="GR-18")
        _seed_pre_gr(self.po, is_gqr_created=True, gr_no="GR-19")

        response = self.client.get("/api/procurement/pre-gr/eligible-for-gqr/")

        self.assertEqual(response.status_code, 200)
        rows = response.json()["results"]
        self.assertEqual([row["pre_gr_id"] for row in rows], [eligible.id])
        row = rows[0]
        self.assertEqual(row["supplier_name"], "Kumar Traders")
        self.assertEqual(row["po_date"], "2024-03-15")
        self.assertEqual(row["po_rate"], 20.0)
        self.assertEqual(row["gr_no"], "GR-17")


# =============================================================================
# GQR
# =============================================================================

@override_settings(**USER_SETTINGS)
class GQRApiTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()
        self.po = _seed_purchase_order()
        self.pre_gr = _seed_pre_gr(self.po)

    def _create(self, **overrides):
        payload = {"pre_gr_id": self.pre_gr.id, **GQR_DEDUCTIONS}
        payload.update(overrides)
        return self.client.post("/api/procurement/gqr/", payload, format="json")

    def test_create_calculates_and_marks_pre_gr(self) -> None:
        response = self._create(final_podi_bags=12, final_gap_item1_bags=8)

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["gqr_status"], "Open")
        self.assertEqual(body["export_quality_weight"], 8850.0)
        self.assertEqual(body["total_wastage_weight"], 350.0)
        self.assertEqual(body["total_value_received"], 188500.0)
        self.assertEqual(
            body["total_value_in_words"], "One Lakh Eighty Eight Thousand Five Hundred Rupees Only"
        )
        self.assertEqual(body["pre_gr_entry"]["purchase_orders"]["suppliers"]["name"], "Kumar Traders")
        self.assertEqual(body["po_date_display"], "15/03/2024")

        self.pre_gr.refresh_from_db()
        self.assertTrue(self.pre_gr.is_gqr_created)
        self.assertEqual(self.pre_gr.podi_bags, 12)
        self.assertEqual(self.pre_gr.gap_item1_bags, 8)

    def test_second_gqr_is_conflict(self) -> None:
        self.assertEqual(self._create().status_code, 201)

        response = self._create()

        self.assertEqual(response.status_code, 409)

    def test_unapproved_pre_gr_is_rejected(self) -> None:
        self.pre_gr.is_admin_approved = False
        self.pre_gr.save()

        response = self._create()

        self.assertEqual(response.status_code, 400)
        self.assertFalse(GQREntry.objects.exists())

    def test_unknown_pre_gr_is_404(self) -> None:
        response = self._create(pre_gr_id=987654)

        self.assertEqual(response.status_code, 404)

    def test_over_accounted_weights_are_rejected(self) -> None:
        response = self._create(rot_weight="9500")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()["errors"]["weights"],
            "Total accounted weight cannot exceed the Pre-GR Net Weight.",
        )
        self.pre_gr.refresh_from_db()
        self.assertFalse(self.pre_gr.is_gqr_created)

    def test_update_with_volatile_rates_and_close(self) -> None:
        gqr_id = self._create().json()["id"]

        response = self.client.patch(
            f"/api/procurement/gqr/{gqr_id}/",
            {"volatile_po_rate": "25", "gqr_status": "Closed"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["gqr_status"], "Closed")
        self.assertEqual(body["export_quality_weight"], 8850.0)
        self.assertEqual(body["total_value_received"], 235250.0)

    def test_gap_items_rate_survives_status_change(self) -> None:
        created = self._create(gap_items_rate="40")

        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["total_value_received"], 198500.0)
        gqr_id = created.json()["id"]
        self.assertEqual(GQREntry.objects.get(id=gqr_id).volatile_gap_item_rate, Decimal("40"))

        response = self.client.patch(
            f"/api/procurement/gqr/{gqr_id}/", {"gqr_status": "Closed"}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total_value_received"], 198500.0)

    def test_update_deductions_recomputes_export(self) -> None:
        gqr_id = self._create().json()["id"]

        response = self.client.patch(
            f"/api/procurement/gqr/{gqr_id}/", {"rot_weight": "400"}, format="json"
        )

        self.assertEqual(response.json()["export_quality_weight"], 8650.0)
        self.assertEqual(response.json()["total_wastage_weight"], 550.0)

    def test_explicit_export_over_net_is_rejected(self) -> None:
        gqr_id = self._create().json()["id"]

        response = self.client.patch(
            f"/api/procurement/gqr/{gqr_id}/", {"export_quality_weight": "9500"}, format="json"
        )

        self.assertEqual(response.status_code, 400)

    def test_invalid_status_value(self) -> None:
        gqr_id = self._create().json()["id"]

        response = self.client.patch(
            f"/api/procurement/gqr/{gqr_id}/", {"gqr_status": "Archived"}, format="json"
        )

        self.assertEqual(response.status_code, 400)

    def test_finalized_gqr_is_read_only(self) -> None:
        gqr_id = self._create().json()["id"]
        GQREntry.objects.filter(id=gqr_id).update(gqr_status=rules.finalized_status("payment"))

        response = self.client.patch(
            f"/api/procurement/gqr/{gqr_id}/", {"rot_weight": "1"}, format="json"
        )

        self.assertEqual(response.status_code, 409)

    def test_detail_unknown_is_404(self) -> None:
        response = self.client.get("/api/procurement/gqr/123456/")

        self.assertEqual(response.status_code, 404)

    def test_list_filters_by_status(self) -> None:
        gqr_id = self._create().json()["id"]
        GQREntry.objects.create(date=date(2024, 3, 20), gqr_status="Closed")

        response = self.client.get("/api/procurement/gqr/", {"status": "Open"})

        self.assertEqual([row["id"] for row in response.json()["results"]], [gqr_id])


class GQRResolverTests(TestCase):
    def test_orphan_gqr_gets_placeholders(self) -> None:
        orphan = GQREntry.objects.create(date=date(2024, 3, 20))

        data = gqr_service.get_gqr(orphan.id)

        self.assertEqual(data["pre_gr_entry"], rules.missing_pre_gr())
        self.assertEqual(data["pre_gr_entry"]["purchase_orders"]["suppliers"]["name"], "N/A")
        self.assertEqual(data["gr_dt_display"], "")

    def test_pre_gr_without_po_gets_po_placeholder(self) -> None:
        pre_gr = PreGREntry.objects.create(date=date(2024, 3, 16), gr_no="GR-9")
        gqr = GQREntry.objects.create(date=date(2024, 3, 20), pre_gr=pre_gr)

        data = gqr_service.get_gqr(gqr.id)

        self.assertEqual(data["pre_gr_entry"]["gr_no"], "GR-9")
        self.assertEqual(data["pre_gr_entry"]["purchase_orders"], rules.missing_purchase_order())

    def test_po_without_supplier_gets_supplier_placeholder(self) -> None:
        po = _seed_purchase_order()
        PurchaseOrder.objects.filter(id=po.id).update(supplier=None)
        gqr = GQREntry.objects.create(date=date(2024, 3, 20), pre_gr=_seed_pre_gr(po))

        data = gqr_service.get_gqr(gqr.id)

        link = data["pre_gr_entry"]["purchase_orders"]
        self.assertEqual(link["suppliers"], {"name": "N/A"})
        self.assertEqual(link["item_master"]["item_name"], "Onion Bellary")

    def test_resolver_is_a_single_query(self) -> None:
        po = _seed_purchase_order()
        for gr_no in ("A", "B", "C"):
            GQREntry.objects.create(date=date(2024, 3, 20), pre_gr=_seed_pre_gr(po, gr_no=gr_no))

        with self.assertNumQueries(1):
            rows = gqr_service.list_gqr()

        self.assertEqual(len(rows), 3)


# =============================================================================
# External GQR feed and Excel export
# =============================================================================

def _seed_closed_gqr(po=None, **overrides):
    po = po or _seed_purchase_order()
    values = dict(
        pre_gr=_seed_pre_gr(po, is_gqr_created=True),
        date=date(2024, 3, 20),
        net_wt=Decimal("10000.000"),
        rot_weight=Decimal("200.000"),
        doubles_weight=Decimal("100.000"),
        sand_weight=Decimal("50.000"),
        weight_shortage=Decimal("0.000"),
        gap_items_weight=Decimal("500.000"),
        podi_weight=Decimal("300.000"),
        export_quality_weight=Decimal("8850.000"),
        total_wastage_weight=Decimal("350.000"),
        total_value_received=Decimal("235250.00"),
        volatile_po_rate=Decimal("25.00"),
        gqr_status=rules.GQR_STATUS_CLOSED,
    )
    values.update(overrides)
    return GQREntry.objects.create(**values)


FEED_ORIGIN = "https://books.example"


@override_settings(EXPORT_API_TOKEN="")
class GQRDataFeedTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    def test_feed_row_shape(self) -> None:
        gqr = _seed_closed_gqr()
        GQREntry.objects.create(date=date(2024, 3, 21), gqr_status="Open")

        response = self.client.get("/api/gqr-data/", HTTP_ORIGIN=FEED_ORIGIN)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Access-Control-Allow-Origin"], "*")
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["count"], 1)
        self.assertEqual(body["message"], "Retrieved 1 GQR records")
        row = body["data"][0]
        self.assertEqual(row["voucherNumber"], f"001-GQR{gqr.id}")
        self.assertEqual(row["voucherDate"], "2024-03-20")
        self.assertEqual(row["actualCargoWeight"], "8.850")
        self.assertEqual(row["actualWastageWeight"], "0.350")
        self.assertEqual(row["cargoValue"], "221250.00")
        self.assertEqual(row["podiValue"], "1500.00")
        self.assertEqual(row["gapValue"], "2500.00")
        self.assertEqual(row["wastageValue"], "8750.00")
        self.assertEqual(row["totalValue"], "234000.00")
        self.assertEqual(row["wastageKgsPerTon"], 50.0)
        self.assertFalse(row["isTallyPosted"])

    def test_rows_without_supplier_are_skipped(self) -> None:
        po = _seed_purchase_order()
        _seed_closed_gqr(po)
        PurchaseOrder.objects.filter(id=po.id).update(supplier=None)

        response = self.client.get("/api/gqr-data/")

        self.assertEqual(response.json()["data"], [])
        self.assertEqual(response.json()["message"], "No GQR records found")

    def test_posted_filter_and_limit(self) -> None:
        po = _seed_purchase_order()
        _seed_closed_gqr(po, is_tally_posted=True)
        _seed_closed_gqr(po)
        _seed_closed_gqr(po)

        posted = self.client.get("/api/gqr-data/", {"posted": "true"}).json()
        limited = self.client.get("/api/gqr-data/", {"limit": "2"}).json()

        self.assertEqual(posted["count"], 1)
        self.assertEqual(limited["count"], 2)

    def test_posted_rows_are_excluded_by_default(self) -> None:
        po = _seed_purchase_order()
        _seed_closed_gqr(po, is_tally_posted=True)

        default = self.client.get("/api/gqr-data/").json()
        posted = self.client.get("/api/gqr-data/", {"posted": "true"}).json()

        self.assertEqual(default["count"], 0)
        self.assertEqual(posted["count"], 1)

    def test_excel_export_skips_posted_rows_by_default(self) -> None:
        gqr = _seed_closed_gqr(is_tally_posted=True)

        default = self.client.get("/api/gqr-data/export.xlsx")
        posted = self.client.get("/api/gqr-data/export.xlsx", {"posted": "true"})

        self.assertEqual(default.json()["count"], 0)
        self.assertEqual(posted.status_code, 200)
        self.assertEqual(load_workbook(BytesIO(posted.content))["GQR Export"]["A2"].value, gqr.id)

    def test_bad_limit_is_400(self) -> None:
        for value in ("0", "-3", "ten"):
            response = self.client.get("/api/gqr-data/", {"limit": value})
            self.assertEqual(response.status_code, 400)
            self.assertFalse(response.json()["success"])

    def test_options_preflight(self) -> None:
        response = self.client.options(
            "/api/gqr-data/update-status/",
            HTTP_ORIGIN=FEED_ORIGIN,
            HTTP_ACCESS_CONTROL_REQUEST_METHOD="POST",
            HTTP_ACCESS_CONTROL_REQUEST_HEADERS="authorization, content-type",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Access-Control-Allow-Origin"], "*")
        self.assertEqual(response["Access-Control-Allow-Methods"], "GET, POST, OPTIONS")
        self.assertEqual(response["Access-Control-Allow-Headers"], "content-type, authorization")

    def test_cross_origin_headers_only_on_feed(self) -> None:
        response = self.client.get("/api/procurement/gqr/", HTTP_ORIGIN=FEED_ORIGIN)

        self.assertNotIn("Access-Control-Allow-Origin", response)

    @override_settings(EXPORT_API_TOKEN="feed-token")
    def test_token_is_required_when_configured(self) -> None:
        denied = self.client.get("/api/gqr-data/", HTTP_ORIGIN=FEED_ORIGIN)
        allowed = self.client.get("/api/gqr-data/", HTTP_AUTHORIZATION="Bearer feed-token")

        self.assertEqual(denied.status_code, 401)
        self.assertEqual(denied["Access-Control-Allow-Origin"], "*")
        self.assertEqual(allowed.status_code, 200)

    def test_update_status(self) -> None:
        gqr = _seed_closed_gqr()

        response = self.client.post(
            "/api/gqr-data/update-status/", {"gqrId": gqr.id, "isPosted": True}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json()["message"], f"GQR {gqr.id} tally posted status updated to true"
        )
        self.assertTrue(response.json()["isTallyPosted"])
        gqr.refresh_from_db()
        self.assertTrue(gqr.is_tally_posted)

    def test_update_status_requires_both_fields(self) -> None:
        response = self.client.post("/api/gqr-data/update-status/", {"gqrId": 1}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "GQR ID and isPosted status are required")

    def test_update_status_unknown_gqr(self) -> None:
        response = self.client.post(
            "/api/gqr-data/update-status/", {"gqrId": 424242, "isPosted": False}, format="json"
        )

        self.assertEqual(response.status_code, 404)

    def test_excel_export(self) -> None:
        gqr = _seed_closed_gqr()

        response = self.client.get("/api/gqr-data/export.xlsx")

        self.assertEqual(response.status_code, 200)
        self.assertIn("attachment", response["Content-Disposition"])
        wb = load_workbook(BytesIO(response.content))
        ws = wb["GQR Export"]
        self.assertEqual(ws.freeze_panes, "A2")
        self.assertEqual(ws["A1"].value, "GQR_ID")
        self.assertEqual(ws.cell(row=1, column=ws.max_column).value, "Total_Value")
        self.assertEqual(ws["A2"].value, gqr.id)
        self.assertEqual(ws.max_row, 2)

    def test_excel_export_without_rows(self) -> None:
        response = self.client.get("/api/gqr-data/export.xlsx")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"success": True, "message": "No GQR records found to export", "count": 0},
        )


# =============================================================================
# Reports
# =============================================================================

@override_settings(**USER_SETTINGS)
class VendorPerformanceTests(TestCase):
    def test_yield_and_wastage_against_po_terms(self) -> None:
        gqr = _seed_closed_gqr()
        GQREntry.objects.create(date=date(2024, 3, 21))

        response = APIClient().get("/api/procurement/reports/vendor-performance/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 1)
        row = response.json()["results"][0]
        self.assertEqual(row["gqr_id"], gqr.id)
        self.assertEqual(row["supplier_name"], "Kumar Traders")
        self.assertEqual(row["assured_cargo_percentage"], 85.0)
        self.assertEqual(row["actual_yield_percentage"], 88.5)
        self.assertEqual(row["yield_variance"], 3.5)
        self.assertEqual(row["allowed_wastage_percentage"], 5.0)
        self.assertEqual(row["actual_wastage_percentage"], 3.5)
        self.assertEqual(row["wastage_variance"], 1.5)
