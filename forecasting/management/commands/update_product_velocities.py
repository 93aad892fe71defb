from datetime import timedelta

from django.core.management.base import BaseCommand, CommandError
from django.utils.dateparse import parse_date

from forecasting.dates import local_today
from forecasting.services import recalculate_daily_summary, update_product_velocities


class Command(BaseCommand):
    help = "Recompute per-product sales velocities and refresh yesterday's and today's sales summary."

    def add_arguments(self, parser):
        parser.add_argument("--summary-date", help="Rebuild the sales summary for this YYYY-MM-DD day instead of yesterday and today.")

    def handle(self, *args, **options):
        updated = update_product_velocities()
        self.stdout.write(self.style.SUCCESS(f"Updated velocities for {updated} products"))

        days = []
        if options.get("summary_date"):
            day = parse_date(options["summary_date"])
            if day is None:
                raise CommandError(f"Invalid --summary-date {options['summary_date']!r}")
            days.append(day)
        else:
            today = local_today()
            days.extend([today - timedelta(days=1), today])

        for day in days:
            summary = recalculate_daily_summary(day)
            self.stdout.write(f"{day}: {summary.order_count} orders, {summary.units_sold} units")
