from .dates import format_local_timestamp, resolve_timezone, utc_now_iso

__all__ = ["format_local_timestamp", "resolve_timezone", "utc_now_iso"]
