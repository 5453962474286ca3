"""
Seed the subscription product in Stripe.

Creates the "CRM Professional" product with its RM59.99/month price unless a
product with that name already exists. Webhooks sync it to the database.
"""

import os
import sys

import stripe

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.settings import settings, PLAN_PRODUCT_NAME, PLAN_UNIT_AMOUNT, PLAN_CURRENCY


PRODUCT_DESCRIPTION = "Full-featured CRM for real estate agents - unlimited contacts, deals, and AI assistant"
PRODUCT_METADATA = {
    "contacts": "unlimited",
    "deals": "unlimited",
    "email_templates": "unlimited",
    "ai_assistant": "true",
}


def create_products() -> bool:
    """Create the plan product and price. Returns False if it already existed."""
    print("Creating subscription product...")

    existing = stripe.Product.search(query=f"name:'{PLAN_PRODUCT_NAME}'")
    if existing.data:
        print("Product already exists:", ", ".join(product.name for product in existing.data))
        print("Skipping product creation. Delete existing products in Stripe Dashboard to recreate.")
        return False

    product = stripe.Product.create(
        name=PLAN_PRODUCT_NAME,
        description=PRODUCT_DESCRIPTION,
        metadata=PRODUCT_METADATA,
    )

    stripe.Price.create(
        product=product.id,
        unit_amount=PLAN_UNIT_AMOUNT,
        currency=PLAN_CURRENCY,
        recurring={"interval": "month"},
    )

    print(f"Created: {PLAN_PRODUCT_NAME} - {settings.plan_price_label}")
    print("\nProduct created successfully!")
    print("Webhooks will automatically sync it to the database.")
    return True


def main() -> int:
    if not settings.stripe_secret_key:
        print("STRIPE_SECRET_KEY is not set.", file=sys.stderr)
        return 1
    stripe.api_key = settings.stripe_secret_key

    try:
        create_products()
    except stripe.StripeError as e:
        print(f"Stripe error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
