from datetime import date, datetime

from app.cvms.modules.templates.placeholders import (
    auto_fill_values,
    evaluate_conditional_blocks,
    extract_placeholders,
    fill_placeholders,
    long_date_pt,
    manual_placeholders,
    merge_values,
)

NOW = datetime(2024, 3, 5, 14, 7)


def test_extract_placeholders_unique_in_order():
    content = "{{ sistema.nome }} / {{data.atual}} / {{sistema.nome}} / {{responsavel}}"
    assert extract_placeholders(content) == ["sistema.nome", "data.atual", "responsavel"]
    assert extract_placeholders(None) == []


def test_auto_fill_values_from_objects_and_mappings():
    system = {"name": "LIMS", "version": "2.1", "vendor": "LabWare", "gamp_category": "4"}
    project = {"name": "LIMS validation", "start_date": date(2024, 1, 2), "target_date": None}
    values = auto_fill_values(NOW, system=system, project=project, user={"full_name": None, "email": "a@b.c"})

    assert values["data.atual"] == "05/03/2024"
    assert values["data.hora"] == "14:07"
    assert values["data.completa"] == "05 de março de 2024"
    assert values["sistema.nome"] == "LIMS"
    assert values["sistema.descricao"] == ""
    assert values["projeto.data_inicio"] == "02/01/2024"
    assert values["projeto.data_alvo"] == ""
    assert values["usuario.nome"] == "a@b.c"
    assert values["empresa.nome"] == ""


def test_long_date_pt():
    assert long_date_pt(date(2023, 12, 25)) == "25 de dezembro de 2023"


def test_fill_placeholders_tolerates_inner_spaces_and_keeps_empty_ones():
    content = "Sistema: {{ sistema.nome }} v{{sistema.versao}} por {{autor}}"
    out = fill_placeholders(content, {"sistema.nome": "SAP", "sistema.versao": "", "autor": "Ana"})
    assert out == "Sistema: SAP v{{sistema.versao}} por Ana"


def test_fill_placeholders_does_not_interpret_replacement_text():
    out = fill_placeholders("{{x}}", {"x": r"C:\new\1 $1"})
    assert out == r"C:\new\1 $1"


def test_manual_placeholders_and_merge():
    auto = auto_fill_values(NOW, system={"name": "SAP"})
    content = "{{sistema.nome}} {{sistema.versao}} {{revisor}}"
    assert manual_placeholders(content, auto) == ["sistema.versao", "revisor"]

    merged = merge_values(auto, {"sistema.nome": "Override", "revisor": "Bruno"})
    assert merged["sistema.nome"] == "Override"
    assert fill_placeholders(content, merged) == "Override {{sistema.versao}} Bruno"


def test_conditional_blocks_keep_only_truthy_conditions():
    blocks = [
        {"condition": "gxp", "content": "GxP section"},
        {"condition": "cloud", "content": "Cloud section"},
        {"condition": "", "content": "never"},
    ]
    assert evaluate_conditional_blocks(blocks, {"gxp": "Sim", "cloud": ""}) == ["GxP section"]
    assert evaluate_conditional_blocks(None, {}) == []
