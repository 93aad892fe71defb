import logging
import time
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from django.conf import settings
from django.utils import timezone

from inventory.models import ImportLog

from .services import OrderIngestionError, ingest_orders, normalize_bulk_order
from .shopify import ShopifyClient, ShopifyError

logger = logging.getLogger(__name__)

COMPLETED = "COMPLETED"
FAILED_STATUSES = {"FAILED", "CANCELED", "CANCELLED", "EXPIRED"}


class BulkImportStalled(ShopifyError):
    """Raised when polling a bulk operation runs out of attempts or time."""


class BulkImportFailed(ShopifyError):
    """Raised when Shopify reports the bulk operation as failed."""


def group_bulk_rows(rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Rebuild orders from bulk JSONL rows.

    Orders arrive as ``__typename == "Order"`` rows; their line items are
    separate rows pointing back through ``__parentId``.
    """
    orders: Dict[str, Dict[str, Any]] = {}
    orphans = 0
    for row in rows:
        if row.get("__typename") == "Order" or not row.get("__parentId"):
            orders[row["id"]] = {**row, "lineItems": []}
        else:
            parent = orders.get(row["__parentId"])
            if parent is None:
                orphans += 1
                continue
            parent["lineItems"].append(row)
    if orphans:
        logger.warning("Dropped %s bulk line items without a parent order", orphans)
    return list(orders.values())


class BulkOrderImport:
    """Start, poll and ingest a Shopify bulk order export."""

    def __init__(self, client: Optional[ShopifyClient] = None):
        self.client = client or ShopifyClient()
        self.poll_interval = float(getattr(settings, "BULK_IMPORT_POLL_INTERVAL", 5))
        self.max_attempts = int(getattr(settings, "BULK_IMPORT_MAX_ATTEMPTS", 120))
        self.timeout = float(getattr(settings, "BULK_IMPORT_TIMEOUT", 900))
        self.lookback_days = int(getattr(settings, "BULK_IMPORT_LOOKBACK_DAYS", 730))

    def start(self, actor: str = "") -> ImportLog:
        since = timezone.now().date() - timedelta(days=self.lookback_days)
        operation = self.client.start_bulk_order_export(since)
        return ImportLog.objects.create(
            import_type=ImportLog.ImportType.SHOPIFY_ORDERS,
            status=ImportLog.Status.IN_PROGRESS,
            file_name=operation["id"],
            imported_by=actor,
        )

    def check(self) -> Dict[str, Any]:
        operation = self.client.current_bulk_operation()
        if not operation:
            return {"operation_id": None, "status": None}
        return {
            "operation_id": operation.get("id"),
            "status": operation.get("status"),
            "error_code": operation.get("errorCode"),
            "object_count": operation.get("objectCount"),
            "file_size": operation.get("fileSize"),
            "url": operation.get("url"),
            "partial_data_url": operation.get("partialDataUrl"),
        }

    def process(self, url: str, import_log: ImportLog) -> ImportLog:
        normalized = []
        errors = []
        try:
            for node in group_bulk_rows(self.client.download_jsonl(url)):
                try:
                    normalized.append(normalize_bulk_order(node))
                except OrderIngestionError as exc:
                    logger.warning("Bulk order %s could not be normalized: %s", node.get("name"), exc)
                    errors.append({"order": node.get("name") or node.get("id"), "error": str(exc)})
            logger.info("Ingesting %s orders from bulk operation %s", len(normalized), import_log.file_name)
            return ingest_orders(normalized, import_log, errors=errors)
        except Exception as exc:
            if not import_log.is_finalized:
                logger.exception("Processing bulk operation %s failed", import_log.file_name)
                self._fail(import_log, ImportLog.Status.FAILED, str(exc) or exc.__class__.__name__)
            raise

    def _fail(self, import_log: ImportLog, status: str, message: str) -> None:
        if not import_log.is_finalized:
            import_log.finalize(status, 0, 0, [{"error": message}])

    def run(
        self,
        actor: str = "",
        cancel_event=None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> ImportLog:
        """
        Run a full export: start, poll until done, then ingest.

        Polling stops after ``BULK_IMPORT_MAX_ATTEMPTS`` checks, after
        ``BULK_IMPORT_TIMEOUT`` seconds, or when ``cancel_event`` is set; the
        import log is then marked stalled. Any other error while polling or
        ingesting marks it failed before propagating.
        """
        import_log = self.start(actor)
        try:
            url = self._poll(import_log, cancel_event, sleep, clock)
            if url is None:
                # Completed with no matching objects.
                import_log.finalize(ImportLog.Status.COMPLETED, 0, 0)
                return import_log
            return self.process(url, import_log)
        except Exception as exc:
            if not import_log.is_finalized:
                logger.exception("Bulk import %s failed", import_log.pk)
                self._fail(import_log, ImportLog.Status.FAILED, str(exc) or exc.__class__.__name__)
            raise

    def _poll(self, import_log: ImportLog, cancel_event, sleep, clock) -> Optional[str]:
        """Wait for this run's bulk operation and return its result URL."""
        operation_id = import_log.file_name
        started = clock()

        for attempt in range(1, self.max_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                self._stalled(import_log, "Import cancelled while waiting for Shopify")
            if clock() - started > self.timeout:
                self._stalled(import_log, f"Bulk operation not complete after {self.timeout:.0f}s")

            status = self.check()
            if status["operation_id"] and status["operation_id"] != operation_id:
                # Shopify runs one bulk query at a time; ours was replaced and will never finish.
                message = f"Bulk operation {operation_id} was superseded by {status['operation_id']}"
                logger.error("Bulk import %s failed: %s", import_log.pk, message)
                self._fail(import_log, ImportLog.Status.FAILED, message)
                raise BulkImportFailed(message)
            state = (status.get("status") or "").upper()
            logger.info("Bulk operation %s poll %s/%s: %s", operation_id, attempt, self.max_attempts, state)

            if state == COMPLETED:
                return status.get("url") or None
            if state in FAILED_STATUSES:
                message = f"Bulk operation {operation_id} ended as {state} ({status.get('error_code')})"
                logger.error("Bulk import %s failed: %s", import_log.pk, message)
                self._fail(import_log, ImportLog.Status.FAILED, message)
                raise BulkImportFailed(message)

            if attempt < self.max_attempts:
                sleep(self.poll_interval)

        self._stalled(import_log, f"Bulk operation not complete after {self.max_attempts} checks")

    def _stalled(self, import_log: ImportLog, message: str):
        logger.error("Bulk import %s stalled: %s", import_log.pk, message)
        self._fail(import_log, ImportLog.Status.STALLED, message)
        raise BulkImportStalled(message)
