from .report_feed import ReportFeed, load_snapshot

__all__ = ["ReportFeed", "load_snapshot"]
