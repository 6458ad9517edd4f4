"""
Result Store do panelflow: um documento JSON por (projeto, painel),
escrito atomicamente.
"""

from .atomic import write_json_atomic, write_text_atomic
from .result_store import ResultStore

__all__ = ["ResultStore", "write_json_atomic", "write_text_atomic"]
