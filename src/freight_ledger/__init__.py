"""Financial settlement and ledger core for freight brokerage back offices."""

__version__ = "0.1.0"
