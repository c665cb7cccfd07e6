"""I/O utilities for scrna-workshop.

Provides logging, CSV table I/O and downloads.
"""

from .logging import get_timestamped_log_path, log_json, log_yaml
from .tables import (
    download_file,
    ensure_output_dir,
    read_cluster_assignment,
    read_score_matrix,
    write_dataframe,
)

__all__ = [
    # Logging
    "get_timestamped_log_path",
    "log_json",
    "log_yaml",
    # Tables
    "download_file",
    "ensure_output_dir",
    "read_cluster_assignment",
    "read_score_matrix",
    "write_dataframe",
]
