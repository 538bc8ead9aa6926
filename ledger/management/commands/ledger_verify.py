from django.core.management.base import BaseCommand

from core.models import Product
from ledger.services import verify_chain


class Command(BaseCommand):
    help = "Verify ownership chain integrity"

    def add_arguments(self, parser):
        parser.add_argument("--product", help="Verify a single product id instead of all products.")

    def handle(self, *args, **options):
        if options.get("product"):
            product_ids = [options["product"]]
        else:
            product_ids = list(Product.objects.order_by("pk").values_list("pk", flat=True))

        failed = 0
        for product_id in product_ids:
            res = verify_chain(product_id)
            if not res["valid"]:
                failed += 1
                self.stdout.write(self.style.ERROR(f"FAIL {product_id}: {res['errors']}"))

        if failed:
            self.stdout.write(self.style.ERROR(f"{failed} of {len(product_ids)} chains broken"))
            raise SystemExit(1)
        self.stdout.write(self.style.SUCCESS(f"OK: {len(product_ids)} chains verified"))
