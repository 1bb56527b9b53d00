"""Inbound webhooks: Telegram updates and Stripe events."""
