"""
Bulk system import: CSV (`,` or `;` delimited) and XLSX (first sheet).

Headers are matched loosely (accents, case and spacing ignored) so that the
Portuguese template columns and their English equivalents both work.
"""
from __future__ import annotations

import io
import logging
import re
import unicodedata
from dataclasses import dataclass, field

TEMPLATE_FILENAME = "template_sistemas.csv"
TEMPLATE_HEADERS = (
    "Nome;Fornecedor;Versão;Categoria GAMP;Criticidade;Status Validação;Descrição;"
    "Impacto GxP;Integridade Dados;BPx Relevante;Local Instalação"
)
TEMPLATE_EXAMPLE = "SAP ERP;SAP SE;S/4HANA 2023;5;Alta;Validado;Sistema ERP principal;Sim;Sim;Sim;OnPremise"

_TRUE_VALUES = ("sim", "yes", "true", "1", "s", "y")

logger = logging.getLogger(__name__)


class ImportFileError(ValueError):
    """The file as a whole cannot be imported (no header, no name column...)."""


@dataclass
class ParsedSystem:
    name: str
    gamp_category: str = "4"
    vendor: str | None = None
    version: str | None = None
    criticality: str | None = None
    validation_status: str | None = None
    description: str | None = None
    gxp_impact: bool | None = None
    data_integrity_impact: bool | None = None
    bpx_relevant: bool | None = None
    installation_location: str | None = None

    def as_payload(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class ImportResult:
    systems: list[ParsedSystem] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def template_csv() -> str:
    return f"{TEMPLATE_HEADERS}\n{TEMPLATE_EXAMPLE}"


def split_csv_line(line: str) -> list[str]:
    result: list[str] = []
    current = ""
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        elif ch in (",", ";") and not in_quotes:
            result.append(current.strip())
            current = ""
        else:
            current += ch
    result.append(current.strip())
    return result


def read_csv_rows(content: str) -> list[list[str]]:
    lines = [ln for ln in re.split(r"\r?\n", content) if ln.strip()]
    return [split_csv_line(ln) for ln in lines]


def normalize_header(header: str) -> str:
    h = unicodedata.normalize("NFD", (header or "").lower())
    h = "".join(ch for ch in h if not unicodedata.combining(ch))
    h = re.sub(r"\s+", "_", h)
    return re.sub(r"[^a-z0-9_]", "", h)


def parse_boolean(value: str) -> bool:
    return (value or "").strip().lower() in _TRUE_VALUES


def map_gamp_category(value: str) -> str:
    digits = re.sub(r"[^0-9]", "", value or "")
    return digits if digits in ("1", "3", "4", "5") else "4"


def map_criticality(value: str) -> str:
    v = (value or "").strip().lower()
    if "baixa" in v or "low" in v:
        return "low"
    if "media" in v or "medium" in v or "média" in v:
        return "medium"
    if "alta" in v or "high" in v:
        return "high"
    if "critica" in v or "critical" in v or "crítica" in v:
        return "critical"
    return "medium"


def map_validation_status(value: str) -> str:
    v = (value or "").strip().lower()
    if "validado" in v or "validated" in v:
        return "validated"
    if "andamento" in v or "progress" in v:
        return "in_progress"
    if "expirado" in v or "expired" in v:
        return "expired"
    if "revalida" in v or "pending" in v:
        return "pending_revalidation"
    return "not_started"


def map_installation_location(value: str) -> str:
    v = (value or "").strip().lower()
    if "nuvem" in v or "cloud" in v:
        return "cloud"
    if "hibrid" in v or "hybrid" in v:
        return "hybrid"
    return "on_premise"


def _apply_column(system: ParsedSystem, header: str, value: str) -> None:
    # First matching rule wins.
    if "fornecedor" in header or "vendor" in header:
        system.vendor = value
    elif "versao" in header or "version" in header:
        system.version = value
    elif "categoria" in header or "gamp" in header:
        system.gamp_category = map_gamp_category(value)
    elif "criticidade" in header or "criticality" in header:
        system.criticality = map_criticality(value)
    elif "status" in header or "validacao" in header:
        system.validation_status = map_validation_status(value)
    elif "descricao" in header or "description" in header:
        system.description = value
    elif "gxp" in header:
        system.gxp_impact = parse_boolean(value)
    elif "integridade" in header or "integrity" in header:
        system.data_integrity_impact = parse_boolean(value)
    elif "bpx" in header:
        system.bpx_relevant = parse_boolean(value)
    elif "local" in header or "location" in header or "instalacao" in header:
        system.installation_location = map_installation_location(value)


def parse_system_rows(rows: list[list[str]]) -> ImportResult:
    """
    Map tabular rows (first row = header) to ParsedSystem entries.

    Raises ImportFileError when the file has no data rows or no name column.
    Rows with an empty name are reported and skipped.
    """
    if len(rows) < 2:
        raise ImportFileError("The file must contain a header row and at least one data row.")

    headers = [normalize_header(h) for h in rows[0]]
    name_index = next((i for i, h in enumerate(headers) if "nome" in h or "name" in h), -1)
    if name_index == -1:
        raise ImportFileError("Column 'Nome' or 'Name' not found.")

    result = ImportResult()
    for idx, row in enumerate(rows[1:], start=2):  # 1 = header
        name = row[name_index].strip() if name_index < len(row) and row[name_index] else ""
        if not name:
            result.errors.append(f"Line {idx}: system name is required")
            continue

        system = ParsedSystem(name=name)
        for col, header in enumerate(headers):
            value = (row[col] if col < len(row) and row[col] is not None else "").strip()
            _apply_column(system, header, value)
        result.systems.append(system)
    logger.info("Systems import parsed: rows=%s systems=%s errors=%s", len(rows) - 1, len(result.systems), len(result.errors))
    return result


def parse_systems_csv(file_bytes: bytes) -> ImportResult:
    text = file_bytes.decode("utf-8-sig", errors="replace")
    return parse_system_rows(read_csv_rows(text))


def parse_systems_xlsx(file_bytes: bytes) -> ImportResult:
    from openpyxl import load_workbook

    wb = load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        rows: list[list[str]] = []
        for values in ws.iter_rows(values_only=True):
            cells = ["" if v is None else str(v).strip() for v in values]
            if any(cells):
                rows.append(cells)
    finally:
        wb.close()
    return parse_system_rows(rows)
