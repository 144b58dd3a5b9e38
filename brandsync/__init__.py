"""brandsync: CRM brand cache synchronization, name resolution and matching."""

__version__ = "0.1.0"
