from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db.models import ProtectedError
from django.test import TestCase
from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.extra.django import TestCase as HypothesisTestCase
from rest_framework import status
from rest_framework.test import APITestCase

from catalog.models import Bundle, BundleComponent, Category, Product, Supplier
from catalog.services import BundleNotFound, BundleResolver, bundle_availability, bundle_cost
from inventory.models import StockLedgerEntry, Warehouse


def _stock(product, warehouse, quantity, reserved=0):
    return StockLedgerEntry.objects.create(product=product, warehouse=warehouse, quantity=quantity, reserved=reserved)


class CatalogModelTests(TestCase):
    def test_category_str_returns_name(self):
        category = Category.objects.create(name="Gadgets", slug="gadgets")
        self.assertEqual(str(category), "Gadgets")

    def test_category_slug_is_auto_generated(self):
        category = Category.objects.create(name="Home Audio")
        self.assertEqual(category.slug, "home-audio")

    def test_duplicate_category_names_get_distinct_slugs(self):
        first = Category.objects.create(name="Candles")
        second = Category.objects.create(name="Candles")
        self.assertEqual(first.slug, "candles")
        self.assertEqual(second.slug, "candles-1")

    def test_product_velocity_for_reads_window_field(self):
        product = Product.objects.create(sku="VEL-1", name="Velocity", velocity_7d=1.5, velocity_30d=0.25)
        self.assertEqual(product.velocity_for(7), 1.5)
        self.assertEqual(product.velocity_for(30), 0.25)

    def test_bundle_component_product_is_protected(self):
        product = Product.objects.create(sku="P-1", name="Wick")
        bundle = Bundle.objects.create(sku="B-1", name="Kit")
        BundleComponent.objects.create(bundle=bundle, product=product, quantity=2)
        with self.assertRaises(ProtectedError):
            product.delete()


class BundleResolverTests(TestCase):
    def setUp(self):
        self.main = Warehouse.objects.create(name="Main")
        self.overflow = Warehouse.objects.create(name="Overflow")
        self.wax = Product.objects.create(sku="WAX", name="Wax", cost_price=Decimal("2.50"))
        self.jar = Product.objects.create(sku="JAR", name="Jar", cost_price=Decimal("1.15"))
        self.bundle = Bundle.objects.create(sku="KIT", name="Candle kit")
        BundleComponent.objects.create(bundle=self.bundle, product=self.wax, quantity=2)
        BundleComponent.objects.create(bundle=self.bundle, product=self.jar, quantity=1)

    def test_availability_is_limited_by_scarcest_component(self):
        _stock(self.wax, self.main, 9)
        _stock(self.jar, self.main, 10)
        self.assertEqual(BundleResolver.availability(self.bundle), 4)

    def test_availability_sums_warehouses_and_ignores_reserved_units(self):
        _stock(self.wax, self.main, 6, reserved=2)
        _stock(self.wax, self.overflow, 4)
        _stock(self.jar, self.main, 3)
        # wax: (4 + 4) // 2 = 4, jar: 3 // 1 = 3
        self.assertEqual(bundle_availability(self.bundle.pk), 3)

    def test_component_without_stock_record_makes_bundle_unavailable(self):
        _stock(self.wax, self.main, 100)
        self.assertEqual(BundleResolver.availability(self.bundle), 0)

    def test_bundle_without_components_is_unavailable(self):
        empty = Bundle.objects.create(sku="EMPTY", name="Empty")
        self.assertEqual(BundleResolver.availability(empty), 0)
        self.assertEqual(BundleResolver.cost(empty), Decimal("0.00"))

    def test_cost_is_sum_of_component_costs(self):
        self.assertEqual(bundle_cost(self.bundle.pk), Decimal("6.15"))

    def test_availability_floors_each_component_ratio(self):
        self.jar_component = BundleComponent.objects.get(bundle=self.bundle, product=self.jar)
        self.jar_component.quantity = 3
        self.jar_component.save()
        _stock(self.wax, self.main, 10)
        _stock(self.jar, self.main, 9)
        # wax: 10 // 2 = 5, jar: 9 // 3 = 3
        self.assertEqual(bundle_availability(self.bundle.pk), 3)

    def test_cost_follows_component_price_changes(self):
        self.wax.cost_price = Decimal("3.00")
        self.wax.save()
        self.assertEqual(bundle_cost(self.bundle.pk), Decimal("7.15"))

    def test_unknown_bundle_raises(self):
        with self.assertRaises(BundleNotFound):
            BundleResolver.availability("00000000-0000-0000-0000-000000000000")


class CatalogApiTests(APITestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="catalog-staff", password="pass1234")
        self.client.force_authenticate(user=self.user)
        self.warehouse = Warehouse.objects.create(name="Main")
        self.supplier = Supplier.objects.create(name="Wax Co")
        self.wax = Product.objects.create(sku="WAX", name="Wax", cost_price=Decimal("2.00"))
        self.wick = Product.objects.create(sku="WICK", name="Wick", cost_price=Decimal("0.10"))

    def test_create_product_and_velocities_are_read_only(self):
        response = self.client.post(
            "/catalog/products/",
            {
                "sku": "SCENT",
                "name": "Scent",
                "unit_price": "4.00",
                "supplier_id": str(self.supplier.id),
                "velocity_7d": 99,
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        product = Product.objects.get(sku="SCENT")
        self.assertEqual(product.supplier, self.supplier)
        self.assertEqual(product.velocity_7d, 0.0)

    def test_negative_price_is_rejected(self):
        response = self.client.post(
            "/catalog/products/", {"sku": "BAD", "name": "Bad", "unit_price": "-1.00"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_delete_product_with_stock_retires_it(self):
        _stock(self.wax, self.warehouse, 5)
        response = self.client.delete(f"/catalog/products/{self.wax.id}/")
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.wax.refresh_from_db()
        self.assertFalse(self.wax.is_active)

    def test_create_bundle_with_components_reports_availability_and_cost(self):
        _stock(self.wax, self.warehouse, 10)
        _stock(self.wick, self.warehouse, 3)
        response = self.client.post(
            "/catalog/bundles/",
            {
                "sku": "KIT",
                "name": "Kit",
                "components": [
                    {"product_id": str(self.wax.id), "quantity": 2},
                    {"product_id": str(self.wick.id), "quantity": 1},
                ],
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data["availability"], 3)
        self.assertEqual(response.data["cost"], "4.10")
        self.assertEqual(BundleComponent.objects.filter(bundle__sku="KIT").count(), 2)

    def test_bundle_rejects_duplicate_component_products(self):
        response = self.client.post(
            "/catalog/bundles/",
            {
                "sku": "DUP",
                "name": "Dup",
                "components": [
                    {"product_id": str(self.wax.id), "quantity": 1},
                    {"product_id": str(self.wax.id), "quantity": 2},
                ],
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Bundle.objects.filter(sku="DUP").exists())

    def test_bundle_availability_endpoint(self):
        bundle = Bundle.objects.create(sku="KIT", name="Kit")
        BundleComponent.objects.create(bundle=bundle, product=self.wax, quantity=3)
        _stock(self.wax, self.warehouse, 10)

        response = self.client.get(f"/catalog/bundles/{bundle.id}/availability/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["availability"], 3)
        self.assertEqual(response.data["cost"], "6.00")

    def test_bundle_availability_endpoint_unknown_bundle(self):
        response = self.client.get("/catalog/bundles/00000000-0000-0000-0000-000000000000/availability/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_requires_authentication(self):
        self.client.force_authenticate(user=None)
        response = self.client.get("/catalog/products/")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


stock_row = st.one_of(
    st.none(),
    st.tuples(st.integers(0, 40), st.integers(0, 40)).map(lambda pair: (max(pair), min(pair))),
)
component = st.tuples(st.integers(1, 5), st.lists(stock_row, min_size=2, max_size=2))


class BundleAvailabilityPropertyTests(HypothesisTestCase):
    @given(components=st.lists(component, min_size=1, max_size=3))
    @settings(max_examples=60, deadline=None)
    def test_availability_is_min_of_floored_component_ratios(self, components):
        warehouses = [Warehouse.objects.create(name="Main"), Warehouse.objects.create(name="Overflow")]
        bundle = Bundle.objects.create(sku="PROP-KIT", name="Property kit")
        expected = []
        for n, (per_bundle, rows) in enumerate(components):
            product = Product.objects.create(sku=f"PROP-{n}", name=f"Part {n}")
            BundleComponent.objects.create(bundle=bundle, product=product, quantity=per_bundle)
            available = 0
            for warehouse, row in zip(warehouses, rows):
                if row is not None:
                    quantity, reserved = row
                    _stock(product, warehouse, quantity, reserved=reserved)
                    available += quantity - reserved
            expected.append(available // per_bundle)

        self.assertEqual(BundleResolver.availability(bundle), min(expected))
