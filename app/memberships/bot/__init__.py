"""Telegram conversation handling: update parsing, routing and replies."""
