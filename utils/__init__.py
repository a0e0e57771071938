"""Shared helpers."""

from utils.timezone import days_ago, is_past, now_utc, parse_iso, to_utc
