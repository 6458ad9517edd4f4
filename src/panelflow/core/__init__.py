# src/panelflow/core/__init__.py
"""
Core do panelflow.

Componentes principais:
    - model        → Project, Panel e tipos trocados entre componentes
    - config       → carregamento, merge, hashing e EngineConfig
    - engine       → planner (grafo de DM_getPanel), templating e Orchestrator
    - traceability → manifest de avaliação e Event Log
    - errors       → ErrorPayload canônico e redação de segredos
    - exceptions   → hierarquia tipada de erros com `code` estável

Princípios fundamentais:
    - Erros de painel são dados (gravados no resultado), não exceções
      propagadas para quem chamou
    - Nenhum segredo em texto plano sai do escopo de um dispatch
"""
