"""SuiteWaste Sync - offline-first capture and reconciliation of weighbridge records."""

__version__ = "1.0.0"
