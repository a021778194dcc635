"""Generator output."""

from enum import Enum
from typing import List

from pydantic import BaseModel

from consequence_kernel.models.consequence import Consequence


class SourceFormat(str, Enum):
    JSON = "json"
    STRUCTURED_TEXT = "structured_text"
    PLAIN_TEXT = "plain_text"
    FALLBACK = "fallback"


class ParsingMetadata(BaseModel):
    source_format: SourceFormat
    total_consequences: int = 0             # Parsed before filtering
    valid_consequences: int = 0             # Returned
    processing_time_ms: float = 0.0


class ConsequenceParsingResult(BaseModel):
    consequences: List[Consequence]
    success: bool
    warnings: List[str] = []
    errors: List[str] = []
    metadata: ParsingMetadata
