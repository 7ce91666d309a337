"""Reporting package — CSV reports and the JSON run summary."""

from .json_export import export_run_summary
from .csv_export import export_csv

__all__ = [
    "export_run_summary",
    "export_csv",
]
