"""
{{placeholder}} substitution for document templates.

Keys are dotted names such as ``sistema.nome`` or ``data.atual``. Values
known from the selected system, project, user and company are filled
automatically; the rest are supplied by the caller ("manual" placeholders).
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")

MONTHS_PT = (
    "janeiro",
    "fevereiro",
    "março",
    "abril",
    "maio",
    "junho",
    "julho",
    "agosto",
    "setembro",
    "outubro",
    "novembro",
    "dezembro",
)


def extract_placeholders(content: str | None) -> list[str]:
    """Unique keys in first-seen order."""
    seen: dict[str, None] = {}
    for m in PLACEHOLDER_RE.finditer(content or ""):
        seen.setdefault(m.group(1).strip(), None)
    return list(seen)


def _attr(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _text(obj: Any, name: str) -> str:
    value = _attr(obj, name)
    return "" if value is None else str(value)


def _br_date(value: date | datetime | str | None) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        value = date.fromisoformat(value[:10])
    return value.strftime("%d/%m/%Y")


def long_date_pt(value: date | datetime) -> str:
    return f"{value.day:02d} de {MONTHS_PT[value.month - 1]} de {value.year}"


def auto_fill_values(
    now: datetime,
    *,
    system: Any = None,
    project: Any = None,
    user: Any = None,
    company: Any = None,
) -> dict[str, str]:
    values = {
        "data.atual": now.strftime("%d/%m/%Y"),
        "data.hora": now.strftime("%H:%M"),
        "data.completa": long_date_pt(now),
    }
    if system is not None:
        values.update(
            {
                "sistema.nome": _text(system, "name"),
                "sistema.versao": _text(system, "version"),
                "sistema.fornecedor": _text(system, "vendor"),
                "sistema.descricao": _text(system, "description"),
                "sistema.categoria_gamp": _text(system, "gamp_category"),
                "sistema.localizacao": _text(system, "installation_location"),
            }
        )
    if project is not None:
        values.update(
            {
                "projeto.nome": _text(project, "name"),
                "projeto.descricao": _text(project, "description"),
                "projeto.tipo": _text(project, "project_type"),
                "projeto.data_inicio": _br_date(_attr(project, "start_date")),
                "projeto.data_alvo": _br_date(_attr(project, "target_date")),
                "projeto.status": _text(project, "status"),
            }
        )
    if user is not None:
        values["usuario.nome"] = _text(user, "full_name") or _text(user, "email")
        values["usuario.email"] = _text(user, "email")
    values["empresa.nome"] = _text(company, "name") if company is not None else ""
    return values


def manual_placeholders(content: str | None, auto: Mapping[str, str]) -> list[str]:
    return [key for key in extract_placeholders(content) if not auto.get(key)]


def fill_placeholders(content: str | None, values: Mapping[str, str | None]) -> str:
    out = content or ""
    for key, value in values.items():
        pattern = re.compile(r"\{\{\s*" + re.escape(key) + r"\s*\}\}")
        replacement = value or "{{" + key + "}}"
        out = pattern.sub(lambda _m: replacement, out)
    return out


def merge_values(auto: Mapping[str, str], manual: Mapping[str, Any] | None) -> dict[str, str]:
    """Manual values win over auto-filled ones."""
    merged = dict(auto)
    for key, value in (manual or {}).items():
        merged[str(key)] = "" if value is None else str(value)
    return merged


def evaluate_conditional_blocks(blocks: Iterable[Mapping[str, Any]] | None, values: Mapping[str, Any]) -> list[str]:
    return [str(b.get("content") or "") for b in blocks or [] if values.get(str(b.get("condition") or "").strip())]
