import logging
from decimal import ROUND_HALF_UP, Decimal

from django.db.models import Sum

from .models import Bundle

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class BundleNotFound(Exception):
    pass


class BundleResolver:
    """
    Derives bundle stock and cost from the component products.

    Nothing here is stored: availability follows the ledger and cost follows
    the component cost prices at the time of the call.
    """

    @staticmethod
    def _get_bundle(bundle_id) -> Bundle:
        bundle = Bundle.objects.filter(pk=bundle_id).prefetch_related("components__product").first()
        if bundle is None:
            raise BundleNotFound(f"Bundle {bundle_id} not found")
        return bundle

    @staticmethod
    def availability(bundle) -> int:
        if not isinstance(bundle, Bundle):
            bundle = BundleResolver._get_bundle(bundle)
        components = list(bundle.components.all())
        if not components:
            return 0

        product_ids = [component.product_id for component in components]
        # Imported lazily: inventory depends on catalog models.
        from inventory.models import StockLedgerEntry

        available_by_product = dict(
            StockLedgerEntry.objects.filter(product_id__in=product_ids)
            .values("product_id")
            .annotate(total=Sum("available"))
            .values_list("product_id", "total")
        )

        buildable = None
        for component in components:
            available = available_by_product.get(component.product_id)
            if available is None:
                return 0
            units = available // component.quantity
            buildable = units if buildable is None else min(buildable, units)
        return max(buildable or 0, 0)

    @staticmethod
    def cost(bundle) -> Decimal:
        if not isinstance(bundle, Bundle):
            bundle = BundleResolver._get_bundle(bundle)
        total = sum(
            (component.product.cost_price * component.quantity for component in bundle.components.all()),
            Decimal("0"),
        )
        return total.quantize(CENTS, rounding=ROUND_HALF_UP)


def bundle_availability(bundle_id) -> int:
    return BundleResolver.availability(bundle_id)


def bundle_cost(bundle_id) -> Decimal:
    return BundleResolver.cost(bundle_id)
