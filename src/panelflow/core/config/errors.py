# src/panelflow/core/config/errors.py
"""
Exceções da camada de configuração do panelflow.

Todas herdam de `ConfigError` e representam violações estruturais da
configuração (arquivo ausente, formato desconhecido, tipos em conflito,
valores inválidos). São fatais: uma avaliação nunca começa com
configuração inválida.
"""


class ConfigError(Exception):
    """Base para erros de carregamento, merge e validação de configuração."""


class DefaultsNotFoundError(ConfigError):
    """O arquivo de defaults informado não existe."""


class UnsupportedConfigFormatError(ConfigError):
    """
    Extensão de arquivo não suportada.

    Formatos aceitos: YAML (.yaml, .yml) e JSON (.json). O formato nunca é
    inferido pelo conteúdo.
    """


class InvalidConfigRootTypeError(ConfigError):
    """O conteúdo raiz do arquivo não é um mapa chave-valor."""


class ConfigTypeConflictError(ConfigError):
    """
    Conflito de tipos durante o deep-merge.

    Exemplo:
        - base:     {"engine": {"concurrency_limit": 4}}
        - override: {"engine": "fast"}

    Nenhum merge parcial é produzido em caso de conflito.
    """
