from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from order.shopify import ORDER_WEBHOOK_TOPICS, ShopifyClient, ShopifyError


class Command(BaseCommand):
    help = "Subscribe the order webhook endpoint to Shopify's order topics."

    def add_arguments(self, parser):
        parser.add_argument(
            "--callback-url",
            default=getattr(settings, "SHOPIFY_WEBHOOK_CALLBACK_URL", ""),
            help="Public URL of /order/webhooks/shopify/. Defaults to SHOPIFY_WEBHOOK_CALLBACK_URL.",
        )
        parser.add_argument(
            "--topic",
            action="append",
            dest="topics",
            choices=ORDER_WEBHOOK_TOPICS,
            help="Register only this topic (repeatable). Defaults to all order topics.",
        )

    def handle(self, *args, **options):
        callback_url = options["callback_url"]
        if not callback_url:
            raise CommandError("No callback URL: pass --callback-url or set SHOPIFY_WEBHOOK_CALLBACK_URL")

        try:
            results = ShopifyClient().register_webhooks(callback_url, options["topics"] or ORDER_WEBHOOK_TOPICS)
        except ShopifyError as exc:
            raise CommandError(f"Shopify error: {exc}")

        for result in results:
            if result["success"]:
                self.stdout.write(f"{result['topic']}: subscribed ({result['id']})")
            else:
                messages = "; ".join(error.get("message", "") for error in result["errors"])
                self.stderr.write(f"{result['topic']}: {messages}")

        succeeded = sum(1 for result in results if result["success"])
        summary = f"Webhook setup complete: {succeeded}/{len(results)} successful for {callback_url}"
        if succeeded == len(results):
            self.stdout.write(self.style.SUCCESS(summary))
        else:
            self.stdout.write(self.style.WARNING(summary))
