"""Building blocks for TPC-C style benchmarks: statistics, an MVTO protocol over an in-memory index, transactions and a driver."""

__version__ = "0.1.0"

__all__ = ["tx_utils", "tidword", "payment", "store", "mvto", "transaction", "runner"]