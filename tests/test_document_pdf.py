from datetime import datetime

from app.cvms.modules.documents.pdf import PdfDocument, latin1, pdf_filename, render_document_pdf


def test_pdf_filename_strips_symbols_and_truncates():
    assert pdf_filename("URS", "URS - SAP ERP (v2)!", "1.0") == "URS_URS_SAP_ERP_v2_v1.0.pdf"
    long_title = "A" * 80
    assert pdf_filename("IQ", long_title, "2.0") == f"IQ_{'A' * 50}_v2.0.pdf"
    assert pdf_filename("OQ", "x", None).endswith("_v1.0.pdf")


def test_latin1_replaces_unsupported_characters():
    assert latin1("“Olá” – ação…") == '"Olá" - ação...'
    assert latin1("• item") == "· item"
    assert latin1("ﬁ") == "fi"
    assert latin1("日") == "?"
    assert latin1(None) == ""


def test_render_document_pdf_produces_a_pdf():
    doc = PdfDocument(
        title="Especificação de Requisitos do Usuário - LIMS",
        document_type="URS",
        version="1.2",
        status="approved",
        content="# Objetivo\n\nTexto do documento.\n\n## Escopo\n- item um\n1. passo\n" + "linha longa " * 200,
        created_at=datetime(2024, 1, 1, 10, 0),
        approved_at=datetime(2024, 1, 2, 10, 0),
        system_name="LIMS",
        author_name="Ana",
        approver_name="Bruno",
    )
    data = render_document_pdf(doc, footer_text="Documento gerado", generated_at=datetime(2024, 1, 3, 9, 30))
    assert data.startswith(b"%PDF")
    assert len(data) > 1000


def test_render_without_content():
    data = render_document_pdf(PdfDocument(title="Empty", document_type="SOP"), footer_text="x")
    assert data.startswith(b"%PDF")
