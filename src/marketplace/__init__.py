"""Job/service marketplace — payment settlement, ledger, and provider tax reporting."""

__version__ = "0.1.0"
