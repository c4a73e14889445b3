from django.core.management.base import BaseCommand, CommandError

from apps.billing.services import get_billing_status_for_enrolments, refresh_open_enrolments
from apps.common.utils.dates import to_studio_date


class Command(BaseCommand):
    help = "Recompute cached paid-through, next due date and credit balance for active enrolments."

    def add_arguments(self, parser):
        parser.add_argument("--as-of", dest="as_of", help="Studio-local date (YYYY-MM-DD)")
        parser.add_argument("--enrolment", dest="enrolment_ids", type=int, action="append", default=[])
        parser.add_argument("--batch-size", dest="batch_size", type=int, default=500)

    def handle(self, *args, **options):
        try:
            as_of = to_studio_date(options["as_of"])
        except ValueError as exc:
            raise CommandError(f"Invalid --as-of date: {exc}")

        if options["enrolment_ids"]:
            snapshots = get_billing_status_for_enrolments(options["enrolment_ids"], as_of)
            for snapshot in snapshots.values():
                self.stdout.write(
                    f"#{snapshot.enrolment_id}: paid through {snapshot.paid_through_date}, "
                    f"next due {snapshot.next_payment_due_date}, credits {snapshot.credit_balance}"
                )
            self.stdout.write(self.style.SUCCESS(f"Refreshed {len(snapshots)} enrolments."))
            return

        refreshed = refresh_open_enrolments(as_of, batch_size=options["batch_size"])
        self.stdout.write(self.style.SUCCESS(f"Refreshed {refreshed} active enrolments."))
