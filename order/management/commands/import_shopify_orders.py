import signal
import threading

from django.core.management.base import BaseCommand, CommandError

from order.bulk_import import BulkImportFailed, BulkImportStalled, BulkOrderImport
from order.shopify import ShopifyError


class Command(BaseCommand):
    help = "Import order history from Shopify through a bulk operation and wait for it to finish."

    def add_arguments(self, parser):
        parser.add_argument("--actor", default="management-command", help="Recorded as the importer.")

    def handle(self, *args, **options):
        cancel_event = threading.Event()
        # Ctrl-C stops polling and marks the import stalled instead of leaving it in progress.
        previous_handler = signal.signal(signal.SIGINT, lambda *_: cancel_event.set())
        try:
            import_log = BulkOrderImport().run(actor=options["actor"], cancel_event=cancel_event)
        except (BulkImportStalled, BulkImportFailed) as exc:
            raise CommandError(str(exc))
        except ShopifyError as exc:
            raise CommandError(f"Shopify error: {exc}")
        finally:
            signal.signal(signal.SIGINT, previous_handler)

        self.stdout.write(
            self.style.SUCCESS(
                f"Import {import_log.id} {import_log.status}: "
                f"{import_log.records_imported} imported, {import_log.records_failed} failed"
            )
        )
