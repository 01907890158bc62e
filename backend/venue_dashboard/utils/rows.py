"""Row-to-model conversion for data returned by the data API."""

import logging
from typing import Any, Iterable, Optional, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def coerce_models(model: type[ModelT], items: Optional[Iterable[Any]]) -> list[ModelT]:
    """
    Accept model instances or raw rows.

    Rows that fail validation are skipped and logged; a None collection is
    treated as empty.
    """
    parsed: list[ModelT] = []
    skipped = 0
    for item in items or []:
        if isinstance(item, model):
            parsed.append(item)
            continue
        try:
            parsed.append(model.model_validate(item))
        except ValidationError as e:
            skipped += 1
            logger.warning(f"Skipping invalid {model.__name__} row: {e.errors()[:1]}")
    if skipped:
        logger.info(f"Parsed {len(parsed)} {model.__name__} rows ({skipped} skipped)")
    return parsed
