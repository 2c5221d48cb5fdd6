"""Output generation for CSV exports."""

from statement_importer.output.csv_exporter import CSVExporter, escape_cell, export_result

__all__ = ["CSVExporter", "escape_cell", "export_result"]
