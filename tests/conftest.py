import re
from pathlib import Path
from typing import Dict

import pytest

SAMPLE_MZXML = """<?xml version="1.0" encoding="ISO-8859-1"?>
<mzXML xmlns="http://sashimi.sourceforge.net/schema_revision/mzXML_3.2"
       xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
       xsi:schemaLocation="http://sashimi.sourceforge.net/schema_revision/mzXML_3.2 http://sashimi.sourceforge.net/schema_revision/mzXML_3.2/mzXML_idx_3.2.xsd">
  <msRun scanCount="3" startTime="PT0.1S" endTime="PT2.5S">
    <parentFile fileName="sample.d" fileType="RAWData" fileSha1="0000000000000000000000000000000000000000"/>
    <!-- acquired on AgQTOF05 -->
    <?instrument-note gap=2?>
    <dataProcessing centroided="1">
      <software type="conversion" name="CompassXport" version="3.0"/>
      <processingOperation name="Centroid &amp; deisotope"/>
    </dataProcessing>
    <scan num="10"
          msLevel="1"
          peaksCount="2"
          retentionTime="PT0.1S">
      <peaks precision="32" byteOrder="network" compressionType="none" compressedLen="0" contentType="m/z-int">Q8gAAEZ6AABDyQAARnoAAA==</peaks>
      <scan num="25" msLevel="2" peaksCount="1" retentionTime="PT0.2S">
        <precursorMz precursorScanNum="10" precursorIntensity="1000" activationMethod="CID">445.12</precursorMz>
        <peaks precision="32" byteOrder="network" compressionType="none" compressedLen="0" contentType="m/z-int">Q8gAAEZ6AAA=</peaks>
      </scan>
    </scan>
    <scan num="40" msLevel="2" peaksCount="0" retentionTime="PT2.5S">
      <precursorMz precursorScanNum="25" precursorIntensity="500">300.5</precursorMz>
      <peaks precision="32" byteOrder="network" compressionType="none" compressedLen="0" contentType="m/z-int"></peaks>
    </scan>
  </msRun>
  <index name="scan">
    <offset id="10">1000</offset>
    <offset id="25">2000</offset>
    <offset id="40">3000</offset>
  </index>
  <indexOffset>4000</indexOffset>
  <sha1>0123456789abcdef0123456789abcdef01234567</sha1>
</mzXML>
"""


def make_mzxml(scans: str, newline: str = "\n") -> str:
    """Minimal mzXML document wrapping the given scan elements."""
    lines = [
        '<?xml version="1.0" encoding="ISO-8859-1"?>',
        '<mzXML xmlns="http://sashimi.sourceforge.net/schema_revision/mzXML_3.2">',
        "  <msRun>",
        scans,
        "  </msRun>",
        '  <index name="scan">',
        '    <offset id="1">0</offset>',
        "  </index>",
        "  <indexOffset>0</indexOffset>",
        "  <sha1>0000000000000000000000000000000000000000</sha1>",
        "</mzXML>",
        "",
    ]
    return newline.join(lines)


def read_index(data: bytes) -> Dict[int, int]:
    return {int(n): int(o) for n, o in re.findall(rb'<offset id="([0-9]+)">([0-9]+)</offset>', data)}


def scan_numbers(data: bytes):
    return [int(n) for n in re.findall(rb'<scan\s[^>]*?num="([0-9]+)"', data)]


@pytest.fixture
def sample_path(tmp_path: Path) -> Path:
    path = tmp_path / "Dataset.mzXML"
    path.write_bytes(SAMPLE_MZXML.encode("iso-8859-1"))
    return path


@pytest.fixture
def sample_crlf_path(tmp_path: Path) -> Path:
    path = tmp_path / "DatasetCRLF.mzXML"
    path.write_bytes(SAMPLE_MZXML.replace("\n", "\r\n").encode("iso-8859-1"))
    return path
