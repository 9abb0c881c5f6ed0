"""
Built-in document templates loaded by ``load_default_templates``.

Placeholder keys match ``placeholders.auto_fill_values`` so a document
generated for a system and project comes out mostly filled in.
"""
from __future__ import annotations

_HEADER = """# {title}

**Sistema:** {{{{sistema.nome}}}} v{{{{sistema.versao}}}}
**Fornecedor:** {{{{sistema.fornecedor}}}}
**Categoria GAMP:** {{{{sistema.categoria_gamp}}}}
**Empresa:** {{{{empresa.nome}}}}
**Elaborado por:** {{{{usuario.nome}}}} em {{{{data.completa}}}}
"""


def _content(title: str, body: str) -> str:
    return _HEADER.format(title=title) + "\n" + body.strip() + "\n"


DEFAULT_TEMPLATES: list[dict] = [
    {
        "name": "URS - Especificação de Requisitos do Usuário",
        "document_type": "URS",
        "description": "User requirements for a computerized system.",
        "content": _content(
            "Especificação de Requisitos do Usuário",
            """
## 1. Objetivo
Definir os requisitos do usuário para o sistema {{sistema.nome}}.

## 2. Escopo
{{sistema.descricao}}

## 3. Requisitos
1. URS-001: {{requisito.principal}}
2. URS-002: O sistema deve manter trilha de auditoria (21 CFR Part 11).
3. URS-003: O sistema deve controlar o acesso por perfil de usuário.

## 4. Aprovações
- Responsável: {{usuario.nome}}
""",
        ),
        "placeholders": [{"key": "requisito.principal", "label": "Main requirement"}],
    },
    {
        "name": "IQ - Qualificação de Instalação",
        "document_type": "IQ",
        "description": "Installation qualification protocol.",
        "content": _content(
            "Protocolo de Qualificação de Instalação",
            """
## 1. Objetivo
Verificar que {{sistema.nome}} foi instalado conforme especificado.

## 2. Ambiente
- Localização: {{sistema.localizacao}}
- Servidor: {{ambiente.servidor}}

## 3. Verificações
1. Versão instalada confere com {{sistema.versao}}.
2. Documentação do fornecedor disponível.
3. Backups configurados.
""",
        ),
        "placeholders": [{"key": "ambiente.servidor", "label": "Server"}],
    },
    {
        "name": "OQ - Qualificação de Operação",
        "document_type": "OQ",
        "description": "Operational qualification protocol.",
        "content": _content(
            "Protocolo de Qualificação de Operação",
            """
## 1. Objetivo
Demonstrar que {{sistema.nome}} opera conforme os requisitos funcionais.

## 2. Projeto
{{projeto.nome}} (início {{projeto.data_inicio}}, alvo {{projeto.data_alvo}})

## 3. Casos de teste
1. Controle de acesso.
2. Trilha de auditoria.
3. Assinatura eletrônica.
""",
        ),
        "placeholders": [],
    },
    {
        "name": "PQ - Qualificação de Desempenho",
        "document_type": "PQ",
        "description": "Performance qualification protocol.",
        "content": _content(
            "Protocolo de Qualificação de Desempenho",
            """
## 1. Objetivo
Demonstrar que {{sistema.nome}} atende ao processo em condições reais de uso.

## 2. Critérios de aceitação
{{criterios.aceitacao}}

## 3. Período de monitoramento
Início em {{data.atual}}.
""",
        ),
        "placeholders": [{"key": "criterios.aceitacao", "label": "Acceptance criteria"}],
    },
    {
        "name": "RA - Análise de Riscos",
        "document_type": "RA",
        "description": "Risk analysis (FMEA) report.",
        "content": _content(
            "Análise de Riscos",
            """
## 1. Metodologia
FMEA: RPN = Probabilidade x Severidade x Detectabilidade.

## 2. Classificação
- RPN >= 500: crítico
- RPN >= 200: alto
- RPN >= 50: médio
- Abaixo de 50: baixo

## 3. Riscos identificados
{{riscos.lista}}
""",
        ),
        "placeholders": [{"key": "riscos.lista", "label": "Identified risks"}],
    },
]
