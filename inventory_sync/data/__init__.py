"""
Local data service and export bundles.
"""

from .bundle import (
    Bundle,
    ExportMeta,
    export_bundle,
    normalize_bundle,
    read_bundle_file,
    sanitize_export_meta,
    write_bundle_file,
)
from .service import ImportMode, ImportSummary, InventoryService

__all__ = [
    "InventoryService",
    "ImportMode",
    "ImportSummary",
    "Bundle",
    "ExportMeta",
    "normalize_bundle",
    "sanitize_export_meta",
    "export_bundle",
    "read_bundle_file",
    "write_bundle_file",
]
