"""
Renumber the scans of mzXML files and rebuild their offset index and sha1.
"""

from .config import RenumberSettings
from .engine import RenumberResult, renumber_mzxml, verify_rebuilt_file
from .errors import (
    DuplicateScanNumber,
    FinalizeError,
    MalformedScanNumber,
    MissingIndexMarker,
    MzXMLIOError,
    RenumberError,
    UnsupportedDocumentType,
    VerificationError,
    XmlParseError,
)
from .line_reader import BinaryTextReader, Line
from .mzxml import LazyMzXmlReader
from .reindex import IndexRebuilder, ScanOffsetMap, finalize, original_sibling_path, sha1_of_file
from .renumber import RewriteResult, ScanNumberMap, ScanRenumberer, iter_nodes, sniff_doctype, sniff_prolog

__all__ = [
    "BinaryTextReader",
    "DuplicateScanNumber",
    "FinalizeError",
    "IndexRebuilder",
    "LazyMzXmlReader",
    "Line",
    "MalformedScanNumber",
    "MissingIndexMarker",
    "MzXMLIOError",
    "RenumberError",
    "RenumberResult",
    "RenumberSettings",
    "RewriteResult",
    "ScanNumberMap",
    "ScanOffsetMap",
    "ScanRenumberer",
    "UnsupportedDocumentType",
    "VerificationError",
    "XmlParseError",
    "finalize",
    "iter_nodes",
    "original_sibling_path",
    "renumber_mzxml",
    "sha1_of_file",
    "sniff_doctype",
    "sniff_prolog",
    "verify_rebuilt_file",
]
