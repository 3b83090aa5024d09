"""
Ingestion helpers for loading customers and orders from CSV exports.
"""

from .csv_loaders import ImportResult, load_customers_csv, load_orders_csv

__all__ = [
    "ImportResult",
    "load_customers_csv",
    "load_orders_csv",
]
