"""Stripe webhook ingestion and subscription state sync."""
