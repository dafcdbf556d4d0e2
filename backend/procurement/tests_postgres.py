import os
import sys
import unittest
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import django
from django.apps import apps

if not apps.ready:
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "ramexpo_api.settings")
    django.setup()

from procurement.services import gqr as gqr_service  # noqa: E402
from procurement.services import purchase_orders as po_service  # noqa: E402


@unittest.skipUnless(
    os.getenv("DJANGO_USE_POSTGRES_TEST") == "1",
    "Postgres integration test disabled (set DJANGO_USE_POSTGRES_TEST=1).",
)
class PostgresIntegrationSmokeTest(unittest.TestCase):
    def setUp(self) -> None:
        if os.getenv("DJANGO_USE_SQLITE", "0") == "1":
            self.skipTest("DJANGO_USE_SQLITE=1; Postgres integration test requires Postgres.")

    def test_next_voucher_number_smoke(self) -> None:
        voucher = po_service.next_voucher_number()

        self.assertTrue(voucher.isdigit())
        self.assertGreaterEqual(len(voucher), 3)

    def test_tally_feed_smoke(self) -> None:
        rows = gqr_service.tally_feed(limit=5)

        self.assertIsInstance(rows, list)
        self.assertLessEqual(len(rows), 5)
        for row in rows:
            self.assertEqual(row["gqrStatus"], "Closed")
            self.assertIn("-GQR", row["voucherNumber"])
