"""
Error types raised while renumbering and reindexing mzXML files.
"""


class RenumberError(Exception):
    """Base class for every failure surfaced by this package."""


class MzXMLIOError(RenumberError):
    """A file could not be opened, read or written."""


class XmlParseError(RenumberError):
    """The source document is not well-formed XML."""


class MalformedScanNumber(RenumberError):
    """A scan number attribute is not a non-negative integer."""


class DuplicateScanNumber(MalformedScanNumber):
    """The same original scan number was used by two scan elements."""


class MissingIndexMarker(RenumberError):
    """No <index name="scan"> line was found, so the file can't be reindexed."""


class FinalizeError(RenumberError):
    """Installing the rebuilt file over the original path failed."""


class VerificationError(RenumberError):
    """The rebuilt file failed its index or checksum check."""


class UnsupportedDocumentType(XmlParseError):
    """The DOCTYPE declares entities, which the streaming parser can't expand."""
