"""Adapters for the source platform (Twitter/X) and the destination (Telegram)."""
