"""Admin-side rendering helpers."""

from .clients_table import clients_table_lines, render_clients_table

__all__ = ["clients_table_lines", "render_clients_table"]
