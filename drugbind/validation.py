"""Row validation for batch prediction input."""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Set

from .batch import BatchRow, ParsedBatchData


REQUIRED_COLUMNS = ("drug_name", "smiles", "protein_name", "fasta")
AMINO_ACIDS = frozenset("ACDEFGHIKLMNPQRSTVWY")
MIN_SEQUENCE_LENGTH = 30
MAX_SEQUENCE_LENGTH = 10_000

_SMILES_CHARS_RE = re.compile(r"^[A-Za-z0-9@+\-\[\]()=#$:.\/\\%*]+$")
_WRAP_RE = re.compile(r"\s+")
_TRUTHY = {"1", "true", "yes", "y", "t"}
# Data rows start at 2 because row 1 of an uploaded table is the header.
FIRST_DATA_ROW = 2


@dataclass
class RowValidation:
    row: Optional[BatchRow]
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.row is not None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_priority(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return _text(value).lower() in _TRUTHY


def clean_sequence(raw: str) -> str:
    """Strip a leading FASTA header and line wrapping, upper-case the residues.

    Only the first header is removed; later ``>`` lines stay in the result so a
    multi-record FASTA is caught by validation instead of being concatenated.
    """
    lines = [line for line in str(raw).splitlines() if line.strip()]
    if lines and lines[0].strip().startswith(">"):
        lines = lines[1:]
    return _WRAP_RE.sub("", "".join(lines)).upper()


def validate_row(raw: Mapping[str, Any], row_number: int) -> RowValidation:
    """Validate one raw record; the returned row is None when any rule fails."""
    errors: List[str] = []
    warnings: List[str] = []
    prefix = f"Row {row_number}"

    drug_name = _text(raw.get("drug_name"))
    protein_name = _text(raw.get("protein_name"))
    smiles = _text(raw.get("smiles"))
    fasta_raw = raw.get("fasta")

    if not drug_name:
        errors.append(f"{prefix}: drug_name is required")
    if not protein_name:
        errors.append(f"{prefix}: protein_name is required")
    if not smiles:
        errors.append(f"{prefix}: smiles is required")
    elif not _SMILES_CHARS_RE.match(smiles):
        warnings.append(f"{prefix}: SMILES for \"{drug_name or smiles}\" contains unusual characters")

    sequence = clean_sequence(fasta_raw) if fasta_raw is not None else ""
    if not sequence:
        errors.append(f"{prefix}: fasta sequence is required")
    elif ">" in sequence:
        errors.append(f"{prefix}: fasta contains multiple sequences")
    else:
        invalid = sorted({ch for ch in sequence if ch not in AMINO_ACIDS})
        if invalid:
            shown = "".join(invalid[:10])
            errors.append(
                f"{prefix}: fasta for \"{protein_name or 'protein'}\" contains invalid characters: {shown}"
            )
        elif len(sequence) < MIN_SEQUENCE_LENGTH:
            warnings.append(f"{prefix}: fasta is unusually short ({len(sequence)} residues)")
        elif len(sequence) > MAX_SEQUENCE_LENGTH:
            warnings.append(f"{prefix}: fasta is unusually long ({len(sequence)} residues)")

    if errors:
        return RowValidation(row=None, errors=errors, warnings=warnings)

    row = BatchRow(
        id=_text(raw.get("id")),
        drug_name=drug_name,
        smiles=smiles,
        protein_name=protein_name,
        fasta=sequence,
        priority=_parse_priority(raw.get("priority")),
    )
    return RowValidation(row=row, errors=errors, warnings=warnings)


def validate_rows(raw_rows: Iterable[Mapping[str, Any]]) -> ParsedBatchData:
    """Validate every record, keeping passing rows and collecting per-row messages."""
    parsed = ParsedBatchData()
    seen_ids: Set[str] = set()
    for offset, raw in enumerate(raw_rows):
        row_number = offset + FIRST_DATA_ROW
        if not isinstance(raw, Mapping):
            parsed.errors.append(f"Row {row_number}: expected a record, got {type(raw).__name__}")
            continue
        result = validate_row(raw, row_number)
        parsed.errors.extend(result.errors)
        parsed.warnings.extend(result.warnings)
        if result.row is None:
            continue
        row = result.row
        row_id = row.id
        if row_id and row_id in seen_ids:
            parsed.warnings.append(f"Row {row_number}: duplicate id '{row_id}' replaced")
            row_id = ""
        if not row_id:
            row_id = f"row-{row_number}"
            while row_id in seen_ids:
                row_id = f"{row_id}-dup"
        seen_ids.add(row_id)
        if row_id != row.id:
            row = BatchRow(
                id=row_id,
                drug_name=row.drug_name,
                smiles=row.smiles,
                protein_name=row.protein_name,
                fasta=row.fasta,
                priority=row.priority,
            )
        parsed.rows.append(row)
    return parsed


def _detect_delimiter(header_line: str) -> str:
    return "\t" if ("\t" in header_line and "," not in header_line) else ","


def parse_batch_table(text: str) -> ParsedBatchData:
    """Read CSV/TSV text with a header row and validate its records."""
    stripped = (text or "").lstrip("\ufeff").strip()
    if not stripped:
        return ParsedBatchData(errors=["No data found in file"])
    delimiter = _detect_delimiter(stripped.splitlines()[0])
    reader = csv.DictReader(io.StringIO(stripped), delimiter=delimiter)
    fieldnames = [name.strip().lower() for name in (reader.fieldnames or [])]
    missing = [col for col in REQUIRED_COLUMNS if col not in fieldnames]
    if missing:
        return ParsedBatchData(errors=[f"Missing required columns: {', '.join(missing)}"])
    records = []
    for raw in reader:
        records.append({(key or "").strip().lower(): value for key, value in raw.items()})
    if not records:
        return ParsedBatchData(errors=["No data found in file"])
    return validate_rows(records)


__all__ = [
    "AMINO_ACIDS",
    "REQUIRED_COLUMNS",
    "RowValidation",
    "clean_sequence",
    "parse_batch_table",
    "validate_row",
    "validate_rows",
]
