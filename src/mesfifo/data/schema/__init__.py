from __future__ import annotations

from mesfifo.data.schema.materials_schema import ensure_schema as ensure_materials_schema
from mesfifo.data.schema.mes_schema import ensure_schema as ensure_mes_schema

__all__ = ["ensure_materials_schema", "ensure_mes_schema"]
