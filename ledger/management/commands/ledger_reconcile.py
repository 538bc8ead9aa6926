from django.core.management.base import BaseCommand

from ledger.services import find_owner_divergence, reconcile_product_owner


class Command(BaseCommand):
    help = "Align product owners with the latest block of their ownership chain"

    def add_arguments(self, parser):
        parser.add_argument("--dry-run", action="store_true", help="Only list diverged products.")

    def handle(self, *args, **options):
        diverged = find_owner_divergence()
        if not diverged:
            self.stdout.write(self.style.SUCCESS("OK: no diverged owners"))
            return

        for row in diverged:
            line = f"{row['product_id']}: owner={row['owner_id']} head={row['head_owner_id']}"
            if options["dry_run"]:
                self.stdout.write(self.style.WARNING(f"DIVERGED {line}"))
            elif reconcile_product_owner(row["product_id"]):
                self.stdout.write(self.style.SUCCESS(f"FIXED {line}"))
            else:
                self.stdout.write(self.style.ERROR(f"SKIPPED {line}"))
