from typing import Literal

from pydantic import BaseModel, Field


class RenumberSettings(BaseModel):
    # Suffix inserted before the extension of the preserved input file
    original_suffix: str = "_original"
    # Temporary siblings of the target file; kept on the same filesystem so the
    # final move is a plain rename
    intermediate_suffix: str = ".renumbered"
    indexed_suffix: str = ".indexed"

    default_encoding: str = "ISO-8859-1"
    read_chunk_size: int = Field(1024 * 1024, gt=0)

    # What to do with precursorScanNum values that name no earlier scan
    unmapped_precursor: Literal["omit", "keep", "fail"] = "omit"

    keep_intermediate: bool = False
    overwrite_original: bool = False
    verify_output: bool = True
