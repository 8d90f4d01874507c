"""Telegram front-end and delivery channel."""
