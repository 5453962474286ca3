"""
Archive superseded plan products in Stripe (sets active=False).
"""

import os
import sys

import stripe

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.settings import settings


OLD_PRODUCT_NAMES = ["CRM Pro", "CRM Basic", "CRM Enterprise"]


def archive_old_products() -> list:
    """Archive every product named in OLD_PRODUCT_NAMES. Returns the archived names."""
    print("Archiving old products...")

    query = " OR ".join(f"name:'{name}'" for name in OLD_PRODUCT_NAMES)
    old_products = stripe.Product.search(query=query)

    archived = []
    for product in old_products.data:
        stripe.Product.modify(product.id, active=False)
        print(f"Archived: {product.name}")
        archived.append(product.name)

    print("\nOld products archived successfully!")
    return archived


def main() -> int:
    if not settings.stripe_secret_key:
        print("STRIPE_SECRET_KEY is not set.", file=sys.stderr)
        return 1
    stripe.api_key = settings.stripe_secret_key

    try:
        archive_old_products()
    except stripe.StripeError as e:
        print(f"Stripe error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
