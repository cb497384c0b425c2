from django.test import TestCase, override_settings
from django.conf import settings
from django.contrib.auth.models import User
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.core.management.base import CommandError
from django.core.files.uploadedfile import SimpleUploadedFile
from rest_framework.test import APITestCase
from django.urls import reverse
from datetime import date, datetime, timezone as dt_timezone
from decimal import Decimal
from types import SimpleNamespace
import base64
import random
import shutil
import tempfile
from io import BytesIO, StringIO
from PIL import Image
from openpyxl import load_workbook
from unittest.mock import patch
from .models import (
    AuditLog,
    Box,
    BoxProduct,
    BoxType,
    Customer,
    Invoice,
    Product,
    ProductInvoiceLink,
    Shipment,
    Supplier,
    UserSettings,
)
from .core.documents import build_commercial_invoice, build_packing_list
from .core.errors import InsufficientStock, PlanLimitExceeded
from .core.ledger import (
    apply_availability_delta,
    average_rate,
    conservation_drift,
    merge_alternate_names,
    receive_product_line,
)
from .core.ocr import normalize_extraction
from .core.packing import (
    add_box_to_shipment,
    box_cbm,
    delete_shipment,
    parse_dimensions,
    remove_box_from_shipment,
    shipment_totals,
    update_box,
    update_box_products,
)
from .core.plan_limits import check_feature, check_limit, current_month_boundaries
from .core.services import (
    create_invoice,
    create_shipment,
    find_similar_supplier,
    payment_status_for,
    record_payment,
    refresh_payment_status,
    set_subscription_status,
)


def make_user(username, paid=True):
    user = User.objects.create_user(
        username=username, email=f"{username}@example.com", password="testpass123"
    )
    if paid:
        set_subscription_status(user, "PAID")
    return user


def make_invoice(user, supplier, number="INV-001", amount="100.00"):
    return create_invoice(user, supplier, number, date(2024, 5, 10), Decimal(amount))


def assert_conserved(testcase, product):
    product.refresh_from_db()
    packed = sum(BoxProduct.objects.filter(product=product).values_list("quantity", flat=True))
    testcase.assertEqual(product.available_quantity + packed, product.quantity)


def png_base64():
    buffer = BytesIO()
    Image.new("RGB", (20, 20), color="white").save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode()


class ProductLedgerTest(TestCase):
    def setUp(self):
        self.user = make_user("ledger")
        self.supplier = Supplier.objects.create(owner=self.user, name="Acme Textiles")
        self.invoice = make_invoice(self.user, self.supplier)

    def test_new_line_creates_product_fully_available(self):
        product, linked = receive_product_line(self.user, self.invoice.id, "  Cotton Shirt ", "6109.10", 100, "10.00")

        self.assertTrue(linked)
        self.assertEqual(product.name, "Cotton Shirt")
        self.assertEqual(product.quantity, 100)
        self.assertEqual(product.available_quantity, 100)
        self.assertEqual(product.invoice_links.count(), 1)

    def test_same_line_twice_is_idempotent(self):
        """Repetir la misma línea para la misma factura no suma unidades"""
        receive_product_line(self.user, self.invoice.id, "Cotton Shirt", "6109.10", 100, "10.00")
        product, linked = receive_product_line(self.user, self.invoice.id, "cotton shirt", "6109.10", 100, "10.00")

        self.assertFalse(linked)
        self.assertEqual(product.quantity, 100)
        self.assertEqual(product.available_quantity, 100)
        self.assertEqual(ProductInvoiceLink.objects.filter(product=product).count(), 1)

    def test_second_invoice_merges_into_existing_product(self):
        product, _ = receive_product_line(self.user, self.invoice.id, "Cotton Shirt", "6109.10", 100, "10.00")
        second = make_invoice(self.user, self.supplier, number="INV-002")

        merged, linked = receive_product_line(
            self.user, second.id, "COTTON SHIRT", "6109.10", 50, "20.00", alternate_names=["Tee", "tee", "Cotton Shirt"]
        )

        self.assertTrue(linked)
        self.assertEqual(merged.id, product.id)
        self.assertEqual(merged.quantity, 150)
        self.assertEqual(merged.available_quantity, 150)
        self.assertEqual(merged.alternate_names, ["Tee"])

    def test_different_hs_code_is_a_different_product(self):
        first, _ = receive_product_line(self.user, self.invoice.id, "Cotton Shirt", "6109.10", 10, "10.00")
        second, _ = receive_product_line(self.user, self.invoice.id, "Cotton Shirt", "6109.90", 10, "10.00")

        self.assertNotEqual(first.id, second.id)

    def test_average_rate_is_unweighted_mean(self):
        receive_product_line(self.user, self.invoice.id, "Cotton Shirt", "6109.10", 1, "10.00")
        second = make_invoice(self.user, self.supplier, number="INV-002")
        product, _ = receive_product_line(self.user, second.id, "Cotton Shirt", "6109.10", 100, "20.00")

        self.assertEqual(average_rate(product), Decimal("15"))

    def test_average_rate_without_links_is_zero(self):
        product = Product.objects.create(owner=self.user, name="Loose", hs_code="1")
        self.assertEqual(average_rate(product), Decimal("0"))

    def test_merge_alternate_names_is_idempotent(self):
        once = merge_alternate_names(["Tee"], ["Shirt", "tee"], "Cotton Shirt")
        twice = merge_alternate_names(once, ["Shirt", "tee"], "Cotton Shirt")

        self.assertEqual(once, ["Tee", "Shirt"])
        self.assertEqual(twice, once)

    def test_invalid_quantity_rejected(self):
        with self.assertRaises(ValidationError):
            receive_product_line(self.user, self.invoice.id, "Cotton Shirt", "6109.10", 0, "10.00")

    def test_availability_delta_clamps_at_zero_and_audits(self):
        product, _ = receive_product_line(self.user, self.invoice.id, "Cotton Shirt", "6109.10", 10, "10.00")

        product = apply_availability_delta(product.id, -25, self.user)

        self.assertEqual(product.available_quantity, 0)
        self.assertTrue(
            AuditLog.objects.filter(action="availability_clamped", entity_id=product.id).exists()
        )

    @override_settings(EXPORTPRO={**settings.EXPORTPRO, "STRICT_AVAILABILITY": True})
    def test_availability_delta_strict_mode_rejects(self):
        product, _ = receive_product_line(self.user, self.invoice.id, "Cotton Shirt", "6109.10", 10, "10.00")

        with self.assertRaises(InsufficientStock):
            apply_availability_delta(product.id, -25, self.user)

        product.refresh_from_db()
        self.assertEqual(product.available_quantity, 10)

    def test_delta_on_another_owners_product_fails(self):
        """Un usuario no puede mover la disponibilidad de productos ajenos"""
        product, _ = receive_product_line(self.user, self.invoice.id, "Cotton Shirt", "6109.10", 100, "10.00")
        intruder = make_user("intruder")

        with self.assertRaises(Product.DoesNotExist):
            apply_availability_delta(product.id, -60, intruder)

        product.refresh_from_db()
        self.assertEqual(product.available_quantity, 100)
        self.assertFalse(AuditLog.objects.filter(entity_id=product.id, action="availability_clamped").exists())


class PackingEngineTest(TestCase):
    def setUp(self):
        self.user = make_user("packer")
        self.supplier = Supplier.objects.create(owner=self.user, name="Acme Textiles")
        self.invoice = make_invoice(self.user, self.supplier)
        self.product, _ = receive_product_line(self.user, self.invoice.id, "Cotton Shirt", "6109.10", 100, "10.00")
        self.other, _ = receive_product_line(self.user, self.invoice.id, "Denim Jeans", "6203.42", 30, "25.00")
        self.box_type = BoxType.objects.create(
            owner=self.user, name="Large", dimensions="60x45x40", max_weight=Decimal("30"), empty_weight=Decimal("1.5")
        )
        self.shipment = create_shipment(self.user, name="March to Miami", destination="Miami")

    def test_end_to_end_scenario_restores_full_availability(self):
        """100 recibidos -> caja con 40 -> caja con 25 -> caja eliminada"""
        box = add_box_to_shipment(self.user, self.shipment.id, products=[{"product_id": self.product.id, "quantity": 40}])
        self.product.refresh_from_db()
        self.assertEqual(self.product.available_quantity, 60)

        update_box_products(self.user, self.shipment.id, box.id, [{"product_id": self.product.id, "quantity": 25}])
        self.product.refresh_from_db()
        self.assertEqual(self.product.available_quantity, 75)

        remove_box_from_shipment(self.user, self.shipment.id, box.id)
        self.product.refresh_from_db()
        self.assertEqual(self.product.available_quantity, 100)
        self.assertFalse(Box.objects.filter(id=box.id).exists())

    def test_top_up_ceiling_is_available_plus_in_box(self):
        box = add_box_to_shipment(self.user, self.shipment.id, products=[{"product_id": self.product.id, "quantity": 40}])

        with self.assertRaises(InsufficientStock) as ctx:
            update_box_products(self.user, self.shipment.id, box.id, [{"product_id": self.product.id, "quantity": 101}])
        self.assertEqual(ctx.exception.metadata["available"], 100)

        # Nada cambió tras el rechazo
        self.product.refresh_from_db()
        self.assertEqual(self.product.available_quantity, 60)
        self.assertEqual(box.items.get().quantity, 40)

        update_box_products(self.user, self.shipment.id, box.id, [{"product_id": self.product.id, "quantity": 100}])
        self.product.refresh_from_db()
        self.assertEqual(self.product.available_quantity, 0)

    def test_new_box_cannot_exceed_available(self):
        with self.assertRaises(InsufficientStock):
            add_box_to_shipment(self.user, self.shipment.id, products=[{"product_id": self.other.id, "quantity": 31}])
        self.assertEqual(self.shipment.boxes.count(), 0)

    def test_duplicate_and_non_positive_products_rejected(self):
        with self.assertRaises(ValidationError):
            add_box_to_shipment(
                self.user,
                self.shipment.id,
                products=[{"product_id": self.product.id, "quantity": 1}, {"product_id": self.product.id, "quantity": 2}],
            )
        with self.assertRaises(ValidationError):
            add_box_to_shipment(self.user, self.shipment.id, products=[{"product_id": self.product.id, "quantity": 0}])

    def test_box_type_snapshot_and_numbering(self):
        first = add_box_to_shipment(self.user, self.shipment.id, box_type_id=self.box_type.id)
        second = add_box_to_shipment(self.user, self.shipment.id, box_type_id=self.box_type.id, dimensions="50x40x30")

        self.assertEqual(first.box_number, 1)
        self.assertEqual(second.box_number, 2)
        self.assertEqual(first.dimensions, "60x45x40")
        self.assertEqual(first.weight, Decimal("1.5"))
        self.assertEqual(second.dimensions, "50x40x30")

        self.box_type.dimensions = "10x10x10"
        self.box_type.save()
        first.refresh_from_db()
        self.assertEqual(first.dimensions, "60x45x40")

    def test_inactive_box_type_rejected(self):
        self.box_type.is_active = False
        self.box_type.save()
        with self.assertRaises(ValidationError):
            add_box_to_shipment(self.user, self.shipment.id, box_type_id=self.box_type.id)

    def test_delete_shipment_returns_everything(self):
        add_box_to_shipment(self.user, self.shipment.id, products=[{"product_id": self.product.id, "quantity": 30}])
        add_box_to_shipment(
            self.user,
            self.shipment.id,
            products=[{"product_id": self.product.id, "quantity": 20}, {"product_id": self.other.id, "quantity": 30}],
        )

        returned = delete_shipment(self.user, self.shipment.id)

        self.assertEqual(returned, {self.product.id: 50, self.other.id: 30})
        self.product.refresh_from_db()
        self.other.refresh_from_db()
        self.assertEqual(self.product.available_quantity, 100)
        self.assertEqual(self.other.available_quantity, 30)
        self.assertFalse(Shipment.objects.filter(id=self.shipment.id).exists())

    def test_failure_mid_operation_rolls_back(self):
        with patch.object(BoxProduct.objects, "bulk_create", side_effect=RuntimeError("db down")):
            with self.assertRaises(RuntimeError):
                add_box_to_shipment(self.user, self.shipment.id, products=[{"product_id": self.product.id, "quantity": 40}])

        self.product.refresh_from_db()
        self.assertEqual(self.product.available_quantity, 100)
        self.assertEqual(self.shipment.boxes.count(), 0)

    def test_conservation_holds_over_random_operations(self):
        rng = random.Random(42)
        products = [self.product, self.other]
        boxes = []
        for _ in range(60):
            operation = rng.choice(["add", "update", "remove"])
            try:
                if operation == "add" or not boxes:
                    chosen = rng.sample(products, rng.randint(1, 2))
                    box = add_box_to_shipment(
                        self.user,
                        self.shipment.id,
                        products=[{"product_id": p.id, "quantity": rng.randint(1, 40)} for p in chosen],
                    )
                    boxes.append(box.id)
                elif operation == "update":
                    chosen = rng.sample(products, rng.randint(1, 2))
                    update_box_products(
                        self.user,
                        self.shipment.id,
                        rng.choice(boxes),
                        [{"product_id": p.id, "quantity": rng.randint(1, 60)} for p in chosen],
                    )
                else:
                    box_id = boxes.pop(rng.randrange(len(boxes)))
                    remove_box_from_shipment(self.user, self.shipment.id, box_id)
            except InsufficientStock:
                pass
            for product in products:
                assert_conserved(self, product)

        self.assertEqual(conservation_drift(Product.objects.for_owner(self.user)), [])

    def test_cbm_is_fail_soft(self):
        box = add_box_to_shipment(self.user, self.shipment.id, dimensions="60x45")
        self.assertEqual(box_cbm(box), 0.0)

        box.dimensions = "60x45x40"
        self.assertAlmostEqual(box_cbm(box), 0.108)
        self.assertIsNone(parse_dimensions("60 by 45 by 40"))

    def test_box_type_edit_never_changes_existing_box_cbm(self):
        """Editar el tipo de caja no altera el volumen de cajas ya empacadas"""
        box = add_box_to_shipment(self.user, self.shipment.id, box_type_id=self.box_type.id)
        box = update_box(self.user, self.shipment.id, box.id, dimensions="")
        self.assertEqual(box.dimensions, "60x45x40")

        self.box_type.dimensions = "100x100x100"
        self.box_type.save()

        box.refresh_from_db()
        self.assertEqual(box.dimensions, "60x45x40")
        self.assertAlmostEqual(box_cbm(box), 0.108)
        self.assertEqual(shipment_totals(Shipment.objects.get(id=self.shipment.id))["total_cbm"], 0.108)

    def test_blank_dimensions_without_box_type_give_zero_cbm(self):
        box = add_box_to_shipment(self.user, self.shipment.id, dimensions="60x45x40")
        box = update_box(self.user, self.shipment.id, box.id, dimensions="")

        box.refresh_from_db()
        self.assertEqual(box.dimensions, "")
        self.assertEqual(box_cbm(box), 0.0)

    def test_availability_deltas_run_in_product_id_order(self):
        """Las filas de producto se bloquean siempre en orden ascendente de id"""
        products = [{"product_id": self.other.id, "quantity": 10}, {"product_id": self.product.id, "quantity": 20}]
        expected = sorted([self.product.id, self.other.id])

        with patch("exportpro.core.packing.apply_availability_delta", wraps=apply_availability_delta) as delta:
            box = add_box_to_shipment(self.user, self.shipment.id, products=products)
        self.assertEqual([call.args[0] for call in delta.call_args_list], expected)

        add_box_to_shipment(self.user, self.shipment.id, products=list(reversed(products)))
        with patch("exportpro.core.packing.apply_availability_delta", wraps=apply_availability_delta) as delta:
            delete_shipment(self.user, self.shipment.id)
        self.assertEqual([call.args[0] for call in delta.call_args_list], expected)
        self.assertFalse(Box.objects.filter(id=box.id).exists())

    def test_shipment_totals(self):
        add_box_to_shipment(
            self.user, self.shipment.id, weight=Decimal("12.5"), dimensions="60x45x40",
            products=[{"product_id": self.product.id, "quantity": 10}],
        )
        add_box_to_shipment(
            self.user, self.shipment.id, weight=Decimal("7.5"), dimensions="bad",
            products=[{"product_id": self.other.id, "quantity": 5}],
        )

        totals = shipment_totals(Shipment.objects.get(id=self.shipment.id))

        self.assertEqual(totals["box_count"], 2)
        self.assertEqual(totals["total_weight"], Decimal("20.0"))
        self.assertEqual(totals["total_cbm"], 0.108)
        self.assertEqual(totals["total_items"], 15)


class PlanLimitsTest(TestCase):
    def test_month_boundaries_are_utc_and_inclusive(self):
        start, end = current_month_boundaries(datetime(2024, 3, 15, 12, 0, tzinfo=dt_timezone.utc))

        self.assertEqual(start, datetime(2024, 3, 1, tzinfo=dt_timezone.utc))
        self.assertEqual(end, datetime(2024, 3, 31, 23, 59, 59, 999999, tzinfo=dt_timezone.utc))

    def test_december_rolls_into_next_year(self):
        _, end = current_month_boundaries(datetime(2024, 12, 31, 23, 0, tzinfo=dt_timezone.utc))
        self.assertEqual(end, datetime(2024, 12, 31, 23, 59, 59, 999999, tzinfo=dt_timezone.utc))

    def test_monthly_limit_counts_only_current_month(self):
        now = datetime(2024, 3, 15, tzinfo=dt_timezone.utc)
        records = [
            SimpleNamespace(created_at=datetime(2024, 2, 29, 23, 59, 59, 999999, tzinfo=dt_timezone.utc)),
            SimpleNamespace(created_at=datetime(2024, 3, 1, tzinfo=dt_timezone.utc)),
            SimpleNamespace(created_at=datetime(2024, 3, 31, 23, 59, 59, 999999, tzinfo=dt_timezone.utc)),
            SimpleNamespace(created_at=datetime(2024, 4, 1, tzinfo=dt_timezone.utc)),
        ]

        self.assertTrue(check_limit("shipments", records, "FREE", now=now).allowed)

        records.append(SimpleNamespace(created_at=datetime(2024, 3, 10, tzinfo=dt_timezone.utc)))
        result = check_limit("shipments", records, "FREE", now=now)
        self.assertFalse(result.allowed)
        self.assertEqual(result.error_code, "SHIPMENT_LIMIT_REACHED")
        self.assertEqual(result.metadata, {"limit": 3, "current": 3, "resource_type": "shipments this month"})

    def test_paid_plan_never_counts(self):
        self.assertTrue(check_limit("suppliers", ["a"] * 500, "PAID").allowed)

    def test_free_product_limit(self):
        result = check_limit("products", list(range(50)), "FREE")
        self.assertFalse(result.allowed)
        self.assertEqual(result.error_code, "PRODUCT_LIMIT_REACHED")

    def test_features_by_plan(self):
        self.assertFalse(check_feature("ocr", "FREE").allowed)
        self.assertEqual(check_feature("data_export", "FREE").error_code, "FEATURE_NOT_AVAILABLE")
        self.assertTrue(check_feature("qr_labels", "PAID").allowed)

    def test_product_limit_only_checked_for_new_products(self):
        user = make_user("limited", paid=False)
        supplier = Supplier.objects.create(owner=user, name="Acme")
        invoice = make_invoice(user, supplier)
        for index in range(50):
            Product.objects.create(owner=user, name=f"Item {index}", hs_code="1")

        with self.assertRaises(PlanLimitExceeded):
            receive_product_line(user, invoice.id, "New Item", "1", 5, "1.00")

        # Sumar a un producto existente sigue permitido
        product, linked = receive_product_line(user, invoice.id, "Item 1", "1", 5, "1.00")
        self.assertTrue(linked)
        self.assertEqual(product.quantity, 5)


class InvoiceServiceTest(TestCase):
    def setUp(self):
        self.user = make_user("buyer")
        self.supplier = Supplier.objects.create(owner=self.user, name="Acme Textiles")

    def test_payment_status_rules(self):
        self.assertEqual(payment_status_for(Decimal("100"), Decimal("0")), "unpaid")
        self.assertEqual(payment_status_for(Decimal("100"), Decimal("40")), "partial")
        self.assertEqual(payment_status_for(Decimal("100"), Decimal("100")), "paid")
        self.assertEqual(payment_status_for(Decimal("100"), Decimal("120")), "paid")

    def test_duplicate_invoice_requires_confirmation(self):
        make_invoice(self.user, self.supplier, number="INV-9")

        with self.assertRaises(ValidationError):
            make_invoice(self.user, self.supplier, number="inv-9")

        invoice = create_invoice(
            self.user, self.supplier, "INV-9", date(2024, 5, 11), Decimal("5"), confirm_duplicate=True
        )
        self.assertEqual(Invoice.objects.filter(invoice_number__iexact="inv-9").count(), 2)
        self.assertEqual(invoice.amount, Decimal("5"))

    def test_find_similar_supplier(self):
        older = Supplier.objects.create(owner=self.user, name="Global Trading LLC")
        suppliers = list(Supplier.objects.for_owner(self.user))

        self.assertEqual(find_similar_supplier(suppliers, " acme "), self.supplier)
        self.assertEqual(find_similar_supplier(suppliers, "Global Trading LLC Shanghai"), older)
        self.assertIsNone(find_similar_supplier(suppliers, "Nobody"))
        self.assertIsNone(find_similar_supplier(suppliers, "   "))

    def test_refresh_payment_status_only_touches_own_invoices(self):
        invoice = make_invoice(self.user, self.supplier, amount="100.00")
        record_payment(self.user, invoice.id, Decimal("100"), date(2024, 5, 12))
        Invoice.objects.filter(id=invoice.id).update(payment_status="unpaid")
        intruder = make_user("intruder")

        self.assertIsNone(refresh_payment_status(intruder, invoice.id))
        invoice.refresh_from_db()
        self.assertEqual(invoice.payment_status, "unpaid")

        self.assertEqual(refresh_payment_status(self.user, invoice.id), "paid")
        invoice.refresh_from_db()
        self.assertEqual(invoice.payment_status, "paid")

    def test_payment_signal_uses_invoice_owner(self):
        invoice = make_invoice(self.user, self.supplier, amount="100.00")

        payment, _ = record_payment(self.user, invoice.id, Decimal("40"), date(2024, 5, 12))
        invoice.refresh_from_db()
        self.assertEqual(invoice.payment_status, "partial")

        payment.delete()
        invoice.refresh_from_db()
        self.assertEqual(invoice.payment_status, "unpaid")


class DocumentGeneratorTest(TestCase):
    def setUp(self):
        self.user = make_user("docs")
        user_settings = UserSettings.for_user(self.user)
        user_settings.name = "ExportCo"
        user_settings.country = "Colombia"
        user_settings.save()
        self.customer = Customer.objects.create(owner=self.user, name="Miami Imports", country="USA")
        supplier = Supplier.objects.create(owner=self.user, name="Acme Textiles")
        first = make_invoice(self.user, supplier, number="INV-1")
        second = make_invoice(self.user, supplier, number="INV-2")
        self.shirt, _ = receive_product_line(self.user, first.id, "Cotton Shirt", "6109.10", 100, "10.00")
        receive_product_line(self.user, second.id, "Cotton Shirt", "6109.10", 10, "20.00")
        self.polo, _ = receive_product_line(self.user, first.id, "Polo Shirt", "6109.10", 20, "8.00")
        self.shipment = create_shipment(self.user, name="March", destination="Miami", customer=self.customer)
        add_box_to_shipment(
            self.user, self.shipment.id, weight=Decimal("10"), dimensions="60x45x40",
            products=[{"product_id": self.shirt.id, "quantity": 10}],
        )
        add_box_to_shipment(
            self.user, self.shipment.id, weight=Decimal("5"), dimensions="60x45x40",
            products=[{"product_id": self.shirt.id, "quantity": 2}, {"product_id": self.polo.id, "quantity": 5}],
        )
        self.shipment = Shipment.objects.get(id=self.shipment.id)

    def test_commercial_invoice_groups_by_hs_code(self):
        invoice = build_commercial_invoice(self.shipment, UserSettings.for_user(self.user), self.customer)

        self.assertEqual(len(invoice["line_items"]), 1)
        line = invoice["line_items"][0]
        self.assertEqual(line["hs_code"], "6109.10")
        self.assertEqual(line["total_quantity"], 17)
        # 12 x 15 + 5 x 8
        self.assertEqual(line["total_value"], Decimal("220.00"))
        self.assertEqual(line["unit_price"], Decimal("12.94"))
        self.assertEqual(invoice["grand_total"], Decimal("220.00"))
        self.assertEqual(invoice["shipper"]["name"], "ExportCo")
        self.assertEqual(invoice["consignee"]["name"], "Miami Imports")

    def test_packing_list_rows_and_totals(self):
        packing_list = build_packing_list(self.shipment, UserSettings.for_user(self.user))

        self.assertEqual(len(packing_list["rows"]), 3)
        self.assertEqual(packing_list["totals"]["total_items"], 17)
        self.assertEqual(packing_list["totals"]["total_weight"], Decimal("15"))
        self.assertEqual(packing_list["totals"]["total_cbm"], 0.216)

    def test_normalize_extraction_maps_camel_case(self):
        data = normalize_extraction({
            "supplier": {"name": " Acme ", "contactPerson": "Ana"},
            "invoice": {"invoiceNumber": "A-1", "date": "2024-05-01", "totalAmount": "1,250.50"},
            "products": [
                {"name": "Shirt", "quantity": "10", "unit": "Dozen", "rate": "5", "hsCode": "6109"},
                {"name": "", "quantity": 3},
            ],
        })

        self.assertEqual(data["supplier"]["name"], "Acme")
        self.assertEqual(data["supplier"]["contact_person"], "Ana")
        self.assertEqual(data["invoice"]["total_amount"], 1250.5)
        self.assertEqual(data["products"], [
            {"name": "Shirt", "quantity": 10, "unit": "pcs", "rate": 5.0, "hs_code": "6109"},
        ])


class ApiContractTest(APITestCase):
    def setUp(self):
        self.media_root = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.media_root, ignore_errors=True)
        self.user = make_user("apiuser")
        self.client.force_authenticate(user=self.user)
        self.supplier = Supplier.objects.create(owner=self.user, name="Acme Textiles")
        self.invoice = make_invoice(self.user, self.supplier)
        self.product, _ = receive_product_line(self.user, self.invoice.id, "Cotton Shirt", "6109.10", 100, "10.00")
        self.shipment = create_shipment(self.user, name="March", destination="Miami")

    def test_free_plan_supplier_limit_returns_403_with_metadata(self):
        set_subscription_status(self.user, "FREE")
        Supplier.objects.create(owner=self.user, name="Second")
        Supplier.objects.create(owner=self.user, name="Third")

        response = self.client.post(reverse("suppliers-list"), {"name": "Fourth"}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data["code"], "SUPPLIER_LIMIT_REACHED")
        self.assertEqual(response.data["metadata"]["limit"], 3)
        self.assertEqual(response.data["metadata"]["current"], 3)
        self.assertIsInstance(response.data["errors"], list)
        self.assertEqual(Supplier.objects.for_owner(self.user).count(), 3)

    def test_other_users_records_are_not_found(self):
        stranger = make_user("stranger")
        foreign = Supplier.objects.create(owner=stranger, name="Hidden")

        response = self.client.get(reverse("suppliers-detail", args=[foreign.id]))

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data["code"], "NOT_FOUND")

    def test_similar_supplier_hint(self):
        response = self.client.get(reverse("suppliers-similar"), {"name": "acme"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["match"]["id"], self.supplier.id)

        response = self.client.get(reverse("suppliers-similar"))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "MISSING_NAME")

    def test_duplicate_invoice_returns_409_until_confirmed(self):
        payload = {
            "supplier": self.supplier.id,
            "invoice_number": "inv-001",
            "date": "2024-05-12",
            "amount": "50.00",
        }
        response = self.client.post(reverse("invoices-list"), payload, format="json")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "DUPLICATE_INVOICE_NUMBER")
        self.assertEqual(response.data["metadata"]["existing_invoice_id"], self.invoice.id)

        payload["confirm_duplicate"] = True
        response = self.client.post(reverse("invoices-list"), payload, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["payment_status"], "unpaid")

    def test_payments_update_status_and_flag_overpayment(self):
        url = reverse("invoices-payments", args=[self.invoice.id])

        response = self.client.post(url, {"amount": "40.00", "payment_date": "2024-05-15"}, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["payment_status"], "partial")
        self.assertFalse(response.data["overpaid"])

        response = self.client.post(url, {"amount": "70.00", "payment_date": "2024-05-20"}, format="json")
        self.assertEqual(response.data["payment_status"], "paid")
        self.assertTrue(response.data["overpaid"])

        payment_id = response.data["payment"]["id"]
        response = self.client.delete(
            reverse("invoices-remove-payment", kwargs={"pk": self.invoice.id, "payment_id": payment_id})
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["payment_status"], "partial")

    def test_amount_change_recomputes_status(self):
        self.client.post(
            reverse("invoices-payments", args=[self.invoice.id]),
            {"amount": "60.00", "payment_date": "2024-05-15"},
            format="json",
        )
        response = self.client.patch(
            reverse("invoices-detail", args=[self.invoice.id]), {"amount": "60.00"}, format="json"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["payment_status"], "paid")

    def test_import_links_similar_supplier_and_receives_products(self):
        payload = {
            "supplier": {"name": "ACME"},
            "invoice": {"invoice_number": "IMP-1", "date": "2024-05-02", "total_amount": "500.00"},
            "products": [
                {"name": "cotton shirt", "hs_code": "6109.10", "quantity": 20, "rate": "12.00"},
                {"name": "Silk Scarf", "hs_code": "6214.10", "quantity": 5, "rate": "30.00", "unit": "pcs"},
            ],
        }

        response = self.client.post(reverse("invoices-import"), payload, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertFalse(response.data["supplier_created"])
        self.assertEqual(response.data["invoice"]["supplier"], self.supplier.id)
        self.product.refresh_from_db()
        self.assertEqual(self.product.quantity, 120)
        self.assertTrue(Product.objects.for_owner(self.user).filter(name="Silk Scarf").exists())

    def test_failed_import_leaves_nothing_behind(self):
        set_subscription_status(self.user, "FREE")
        for index in range(49):
            Product.objects.create(owner=self.user, name=f"Filler {index}", hs_code="1")
        payload = {
            "supplier": {"name": "Brand New Supplier"},
            "invoice": {"invoice_number": "IMP-2", "date": "2024-05-02", "total_amount": "10.00"},
            "products": [
                {"name": "New A", "quantity": 1, "rate": "1.00"},
                {"name": "New B", "quantity": 1, "rate": "1.00"},
            ],
        }

        response = self.client.post(reverse("invoices-import"), payload, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data["code"], "PRODUCT_LIMIT_REACHED")
        self.assertFalse(Supplier.objects.filter(name="Brand New Supplier").exists())
        self.assertFalse(Invoice.objects.filter(invoice_number="IMP-2").exists())
        self.assertFalse(Product.objects.filter(name="New A").exists())

    def test_receive_line_twice_reports_already_linked(self):
        url = reverse("invoices-receive", args=[self.invoice.id])
        payload = {"name": "Cotton Shirt", "hs_code": "6109.10", "quantity": 100, "rate": "10.00"}

        response = self.client.post(url, payload, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["code"], "PRODUCT_ALREADY_LINKED")
        self.assertFalse(response.data["linked"])

    def test_product_quantities_are_read_only(self):
        response = self.client.patch(
            reverse("products-detail", args=[self.product.id]),
            {"name": "Cotton Tee", "quantity": 999, "available_quantity": 999},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.product.refresh_from_db()
        self.assertEqual(self.product.name, "Cotton Tee")
        self.assertEqual(self.product.quantity, 100)
        self.assertEqual(self.product.available_quantity, 100)

    def test_product_search_matches_alternate_names(self):
        Product.objects.filter(id=self.product.id).update(alternate_names=["Camiseta"])

        response = self.client.get(reverse("products-list"), {"search": "camis"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["id"] for item in response.data], [self.product.id])

    def test_packed_product_cannot_be_deleted(self):
        add_box_to_shipment(self.user, self.shipment.id, products=[{"product_id": self.product.id, "quantity": 1}])

        response = self.client.delete(reverse("products-detail", args=[self.product.id]))

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "PROTECTED_RESOURCE")

    def test_box_over_available_returns_409(self):
        response = self.client.post(
            reverse("shipments-boxes", args=[self.shipment.id]),
            {"dimensions": "60x45x40", "products": [{"product_id": self.product.id, "quantity": 101}]},
            format="json",
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "INSUFFICIENT_STOCK")
        self.assertEqual(response.data["metadata"]["available"], 100)
        self.assertTrue(any("Stock insuficiente" in message for message in response.data["errors"]))

    def test_box_lifecycle_through_api(self):
        response = self.client.post(
            reverse("shipments-boxes", args=[self.shipment.id]),
            {"dimensions": "60x45x40", "products": [{"product_id": self.product.id, "quantity": 40}]},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        box_id = response.data["id"]
        self.assertEqual(response.data["cbm"], 0.108)

        response = self.client.put(
            reverse("shipments-box-products", kwargs={"pk": self.shipment.id, "box_id": box_id}),
            {"products": [{"product_id": self.product.id, "quantity": 25}]},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["total_items"], 25)

        response = self.client.patch(
            reverse("shipments-box", kwargs={"pk": self.shipment.id, "box_id": box_id}),
            {"weight": "9.50"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["weight"], "9.50")

        response = self.client.delete(reverse("shipments-box", kwargs={"pk": self.shipment.id, "box_id": box_id}))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["restored"], [{"product_id": self.product.id, "quantity": 25}])
        self.product.refresh_from_db()
        self.assertEqual(self.product.available_quantity, 100)

    def test_box_label_shows_position(self):
        add_box_to_shipment(self.user, self.shipment.id, products=[{"product_id": self.product.id, "quantity": 5}])
        second = add_box_to_shipment(self.user, self.shipment.id)

        response = self.client.get(
            reverse("shipments-box-label", kwargs={"pk": self.shipment.id, "box_id": second.id}), {"qr": "true"}
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["box_label"], "2 of 2")
        self.assertIn("qr_data", response.data)

    def test_free_plan_cannot_export_or_use_qr(self):
        set_subscription_status(self.user, "FREE")
        box = add_box_to_shipment(self.user, self.shipment.id)

        response = self.client.get(
            reverse("shipments-export", kwargs={"pk": self.shipment.id, "document": "packing-list"})
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data["code"], "FEATURE_NOT_AVAILABLE")

        response = self.client.get(
            reverse("shipments-box-label", kwargs={"pk": self.shipment.id, "box_id": box.id}), {"qr": "true"}
        )
        self.assertEqual(response.status_code, 403)

    def test_excel_exports(self):
        add_box_to_shipment(
            self.user, self.shipment.id, dimensions="60x45x40",
            products=[{"product_id": self.product.id, "quantity": 5}],
        )
        expected = {
            "packing-list": ["Packing List", "Boxes", "Totals"],
            "commercial-invoice": ["Commercial Invoice", "Summary"],
            "invoice-mapping": ["Summary", f"{self.invoice.id} INV-001"],
        }
        for document, sheets in expected.items():
            response = self.client.get(
                reverse("shipments-export", kwargs={"pk": self.shipment.id, "document": document})
            )
            self.assertEqual(response.status_code, 200)
            self.assertIn("spreadsheetml", response["Content-Type"])
            workbook = load_workbook(BytesIO(response.content))
            self.assertEqual(workbook.sheetnames, sheets)

    def test_delete_shipment_via_api_restores_stock(self):
        add_box_to_shipment(self.user, self.shipment.id, products=[{"product_id": self.product.id, "quantity": 30}])

        response = self.client.delete(reverse("shipments-detail", args=[self.shipment.id]))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["code"], "SHIPMENT_DELETED")
        self.product.refresh_from_db()
        self.assertEqual(self.product.available_quantity, 100)

    def test_shipment_document_upload(self):
        with self.settings(MEDIA_ROOT=self.media_root):
            upload = SimpleUploadedFile("bl.pdf", b"%PDF-1.4 bill of lading", content_type="application/pdf")
            response = self.client.post(
                reverse("shipments-documents", args=[self.shipment.id]),
                {"file": upload, "doc_type": "BILL_OF_LADING"},
                format="multipart",
            )
            self.assertEqual(response.status_code, 201)
            self.assertEqual(response.data["mime_type"], "application/pdf")

            upload = SimpleUploadedFile("notes.txt", b"hello", content_type="text/plain")
            response = self.client.post(
                reverse("shipments-documents", args=[self.shipment.id]),
                {"file": upload, "doc_type": "OTHER", "custom_doc_type_label": "Notes"},
                format="multipart",
            )
            self.assertEqual(response.status_code, 400)

    def test_box_type_soft_and_hard_delete(self):
        box_type = BoxType.objects.create(owner=self.user, name="Medium", dimensions="50x40x30", max_weight=Decimal("20"))
        box = add_box_to_shipment(self.user, self.shipment.id, box_type_id=box_type.id)

        response = self.client.post(
            reverse("box-types-list"), {"name": "medium", "dimensions": "1x1x1", "max_weight": "1"}, format="json"
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.delete(reverse("box-types-detail", args=[box_type.id]))
        self.assertEqual(response.status_code, 204)
        box_type.refresh_from_db()
        self.assertFalse(box_type.is_active)
        self.assertEqual(self.client.get(reverse("box-types-list")).data, [])

        response = self.client.delete(reverse("box-types-detail", args=[box_type.id]) + "?hard=true")
        self.assertEqual(response.status_code, 204)
        box.refresh_from_db()
        self.assertIsNone(box.box_type)
        self.assertEqual(box.dimensions, "50x40x30")

    def test_account_plan_usage(self):
        set_subscription_status(self.user, "FREE")

        response = self.client.get(reverse("account-plan"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["subscription_status"], "FREE")
        self.assertEqual(response.data["usage"]["suppliers"], {"current": 1, "limit": 3, "monthly": False})
        self.assertEqual(response.data["usage"]["shipments"]["current"], 1)
        self.assertFalse(response.data["features"]["ocr"])

    def test_account_settings_cannot_change_plan(self):
        response = self.client.patch(
            reverse("account-settings"), {"name": "ExportCo", "subscription_status": "FREE"}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["name"], "ExportCo")
        self.assertEqual(UserSettings.for_user(self.user).subscription_status, "PAID")

    def test_dashboard_overview(self):
        add_box_to_shipment(self.user, self.shipment.id, products=[{"product_id": self.product.id, "quantity": 30}])

        response = self.client.get(reverse("dashboard-overview"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["inventory"]["total_packed"], 30)
        self.assertEqual(response.data["inventory"]["value"], Decimal("700"))
        self.assertEqual(response.data["invoices"]["outstanding_amount"], Decimal("100.00"))

    def test_products_export_csv(self):
        response = self.client.get(reverse("export-products"), {"output": "csv"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        self.assertIn("Cotton Shirt", response.content.decode("utf-8-sig"))


@override_settings(EXPORTPRO={**settings.EXPORTPRO, "OCR_ENDPOINT": "https://ocr.example.com/extract", "OCR_API_KEY": "secret"})
class OCRExtractionApiTest(APITestCase):
    def setUp(self):
        self.user = make_user("ocruser")
        self.client.force_authenticate(user=self.user)

    @patch("exportpro.core.ocr._http_json")
    def test_extract_returns_normalized_payload(self, http_json):
        http_json.return_value = {
            "data": {
                "supplier": {"name": "Acme"},
                "invoice": {"invoiceNumber": "A-77", "date": "2024-05-01", "totalAmount": 90},
                "products": [{"name": "Shirt", "quantity": 9, "rate": 10, "hsCode": "6109", "unit": "pcs"}],
            }
        }

        response = self.client.post(reverse("invoices-extract"), {"image_base64": png_base64()}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["data"]["invoice"]["invoice_number"], "A-77")
        self.assertEqual(response.data["data"]["products"][0]["hs_code"], "6109")
        _, kwargs = http_json.call_args
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer secret")
        self.assertIn("imageBase64", kwargs["payload"])

    @patch("exportpro.core.ocr._http_json")
    def test_extract_error_from_function(self, http_json):
        http_json.return_value = {"error": "unreadable scan"}

        response = self.client.post(reverse("invoices-extract"), {"image_base64": png_base64()}, format="json")

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.data["code"], "OCR_EXTRACTION_FAILED")

    @patch("exportpro.core.ocr._http_json")
    def test_invalid_image_never_reaches_function(self, http_json):
        payload = {"image_base64": base64.b64encode(b"not an image").decode()}

        response = self.client.post(reverse("invoices-extract"), payload, format="json")

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.data["code"], "INVALID_OCR_PAYLOAD")
        http_json.assert_not_called()

    def test_free_plan_cannot_use_ocr(self):
        set_subscription_status(self.user, "FREE")

        response = self.client.post(reverse("invoices-extract"), {"image_base64": png_base64()}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data["code"], "FEATURE_NOT_AVAILABLE")


class ManagementCommandTest(TestCase):
    def setUp(self):
        self.user = make_user("cmduser", paid=False)

    def test_set_subscription(self):
        out = StringIO()
        call_command("set_subscription", username="cmduser", status="paid", stdout=out)

        self.assertEqual(UserSettings.for_user(self.user).subscription_status, "PAID")
        self.assertIn("PAID", out.getvalue())
        self.assertTrue(AuditLog.objects.filter(action="update_subscription", owner=self.user).exists())

    def test_set_subscription_rejects_unknown_plan(self):
        with self.assertRaises(CommandError):
            call_command("set_subscription", username="cmduser", status="GOLD")

    def test_check_inventory_conservation(self):
        supplier = Supplier.objects.create(owner=self.user, name="Acme")
        invoice = make_invoice(self.user, supplier)
        product, _ = receive_product_line(self.user, invoice.id, "Shirt", "6109", 10, "1.00")

        out = StringIO()
        call_command("check_inventory_conservation", username="cmduser", stdout=out)
        self.assertIn("consistente", out.getvalue())

        Product.objects.filter(id=product.id).update(available_quantity=3)
        with self.assertRaises(CommandError):
            call_command("check_inventory_conservation", stdout=StringIO())
