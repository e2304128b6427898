"""
Reading count matrices and lookup tables, writing summary tables.

Key Functions:
    - load_count_matrix: counts + cell metadata -> CountMatrix
    - load_name_mapping: feature id -> display name lookup
    - write_summary_tables: summary / significant / failed tables
    - write_group_details: per-group normalized results with display names
    - write_parameters: JSON provenance of a run
"""

from pbsummary.io.loaders import load_table, load_count_matrix, load_name_mapping
from pbsummary.io.writers import (
    safe_filename,
    write_table,
    write_summary_tables,
    write_group_details,
    write_parameters,
)

__all__ = [
    'load_table',
    'load_count_matrix',
    'load_name_mapping',
    'safe_filename',
    'write_table',
    'write_summary_tables',
    'write_group_details',
    'write_parameters',
]
