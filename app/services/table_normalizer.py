# app/services/table_normalizer.py
from typing import Any, Mapping

from app.models.table_models import ExtractionData, NamedTable
from .errors import ValidationError

MULTI_TABLE_ERROR  = "Invalid multiple tables format in model response"
SINGLE_TABLE_ERROR = "Invalid table data format in model response"


def _is_table(obj: Any) -> bool:
    return (
        isinstance(obj, Mapping)
        and isinstance(obj.get("headers"), list)
        and isinstance(obj.get("rows"), list)
    )


def normalize(parsed: Any) -> ExtractionData:
    """
    Shape a decoded payload into ExtractionData. Either ``{"tables": [...]}``
    (the first table becomes the canonical headers/rows) or a bare
    ``{"headers": [...], "rows": [...]}``. Only ``headers`` and ``rows`` are
    checked; cell values and any other table keys are kept as they are.
    """
    tables = parsed.get("tables") if isinstance(parsed, Mapping) else None
    if isinstance(tables, list) and tables:
        if not all(_is_table(t) for t in tables):
            raise ValidationError(MULTI_TABLE_ERROR)
        named = [NamedTable.model_validate(dict(t)) for t in tables]
        return ExtractionData(headers=named[0].headers, rows=named[0].rows, tables=named)

    if not _is_table(parsed):
        raise ValidationError(SINGLE_TABLE_ERROR)
    return ExtractionData(headers=parsed["headers"], rows=parsed["rows"])
