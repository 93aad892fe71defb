import csv
import io
import logging
from typing import Dict, Iterable, List

from django.db import transaction

from catalog.models import Product

from .models import ImportLog, StockMovement, Warehouse
from .services import InvalidQuantity, InventoryService, StockRecordNotFound, lock_stock

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("sku", "warehouse_name", "quantity")


def parse_stock_csv(content) -> List[Dict[str, str]]:
    if isinstance(content, bytes):
        content = content.decode("utf-8-sig")
    reader = csv.DictReader(io.StringIO(content))
    rows = []
    for row in reader:
        rows.append({(key or "").strip().lower(): (value or "").strip() for key, value in row.items()})
    return rows


def _parse_count(value, field):
    if value in (None, ""):
        return 0
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise InvalidQuantity(f"{field} must be a whole number, got {value!r}")
    if number < 0:
        raise InvalidQuantity(f"{field} must not be negative, got {number}")
    return number


def _import_row(row, import_log, actor):
    missing = [column for column in REQUIRED_COLUMNS if not str(row.get(column) or "").strip()]
    if missing:
        raise InvalidQuantity(f"Missing required column(s): {', '.join(missing)}")

    sku = str(row["sku"]).strip()
    warehouse_name = str(row["warehouse_name"]).strip()
    quantity = _parse_count(row["quantity"], "quantity")

    product = Product.objects.filter(sku=sku).first()
    if product is None:
        raise StockRecordNotFound(f"Product with SKU '{sku}' not found")
    warehouse = Warehouse.objects.filter(name__iexact=warehouse_name).first()
    if warehouse is None:
        raise StockRecordNotFound(f"Warehouse '{warehouse_name}' not found")

    with transaction.atomic():
        entry = lock_stock(product.pk, warehouse.pk, create=True)
        if str(row.get("par_level") or "").strip():
            entry.par_level = _parse_count(row["par_level"], "par_level")
        if str(row.get("reorder_point") or "").strip():
            entry.reorder_point = _parse_count(row["reorder_point"], "reorder_point")
        entry.save(update_fields=["par_level", "reorder_point", "updated_at"])
        InventoryService.receive_stock(
            entry,
            quantity,
            reference_type=StockMovement.ReferenceType.IMPORT,
            reference_id=import_log.pk,
            actor=actor,
            notes=f"Imported from {import_log.file_name}",
        )


def import_stock_rows(rows: Iterable[Dict], *, file_name: str = "", actor: str = "") -> ImportLog:
    """
    Add imported quantities to the ledger, one transaction per row.

    Rows carry ``sku``, ``warehouse_name``, ``quantity`` and optionally
    ``par_level`` and ``reorder_point``. A bad row is recorded in the
    import log and does not stop the batch.
    """
    import_log = ImportLog.objects.create(
        import_type=ImportLog.ImportType.INVENTORY,
        file_name=file_name,
        imported_by=actor,
        status=ImportLog.Status.IN_PROGRESS,
    )

    imported = 0
    errors = []
    for index, row in enumerate(rows, start=1):
        try:
            _import_row(row, import_log, actor)
            imported += 1
        except (StockRecordNotFound, InvalidQuantity) as exc:
            logger.warning("Inventory import %s row %s failed: %s", import_log.pk, index, exc)
            errors.append({"row": index, "sku": row.get("sku", ""), "error": str(exc)})

    if errors and imported:
        status = ImportLog.Status.PARTIAL
    elif errors:
        status = ImportLog.Status.FAILED
    else:
        status = ImportLog.Status.COMPLETED
    import_log.finalize(status, imported, len(errors), errors)
    logger.info(
        "Inventory import %s finished as %s: %s imported, %s failed",
        import_log.pk, status, imported, len(errors),
    )
    return import_log
