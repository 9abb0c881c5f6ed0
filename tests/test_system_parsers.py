import io

import pytest
from openpyxl import Workbook

from app.cvms.modules.systems.parsers import (
    ImportFileError,
    map_criticality,
    map_gamp_category,
    map_installation_location,
    map_validation_status,
    parse_systems_csv,
    parse_systems_xlsx,
    split_csv_line,
    template_csv,
)


def test_split_csv_line_honours_quotes_and_both_delimiters():
    assert split_csv_line('a;"b;c", d') == ["a", "b;c", "d"]


def test_value_mapping():
    assert map_gamp_category("Categoria 5") == "5"
    assert map_gamp_category("2") == "4"
    assert map_criticality("Alta") == "high"
    assert map_criticality("Crítica") == "critical"
    assert map_criticality("???") == "medium"
    assert map_validation_status("Em andamento") == "in_progress"
    assert map_validation_status("") == "not_started"
    assert map_installation_location("Nuvem") == "cloud"
    assert map_installation_location("") == "on_premise"


def test_template_round_trips_through_the_csv_parser():
    result = parse_systems_csv(template_csv().encode("utf-8"))
    assert result.errors == []
    [sap] = result.systems
    assert sap.name == "SAP ERP"
    assert sap.vendor == "SAP SE"
    assert sap.gamp_category == "5"
    assert sap.criticality == "high"
    assert sap.validation_status == "validated"
    assert sap.gxp_impact is True
    assert sap.installation_location == "on_premise"


def test_rows_without_name_are_reported():
    content = "Name,Vendor\n,Acme\nLIMS,LabWare\n"
    result = parse_systems_csv(content.encode("utf-8"))
    assert [s.name for s in result.systems] == ["LIMS"]
    assert result.errors == ["Line 2: system name is required"]


def test_missing_name_column_or_data_is_a_file_error():
    with pytest.raises(ImportFileError):
        parse_systems_csv(b"Vendor\nAcme\n")
    with pytest.raises(ImportFileError):
        parse_systems_csv(b"Name\n")


def test_xlsx_first_sheet():
    wb = Workbook()
    ws = wb.active
    ws.append(["Nome", "Categoria GAMP", "Impacto GxP"])
    ws.append(["MES", 4, "Sim"])
    ws.append([None, None, None])
    buf = io.BytesIO()
    wb.save(buf)

    result = parse_systems_xlsx(buf.getvalue())
    [mes] = result.systems
    assert mes.name == "MES"
    assert mes.gamp_category == "4"
    assert mes.gxp_impact is True
