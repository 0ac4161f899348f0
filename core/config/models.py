"""Engine settings model."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt, model_validator

from core.templates.occurrence_extractor import DEFAULT_CONTEXT_WINDOW, DEFAULT_LABEL_WORDS


class FillSettings(BaseModel):
    """Tunables for extraction, slot mapping and oracle calls, loaded from YAML."""

    model_config = ConfigDict(extra="forbid")

    label_words: list[str] = Field(default_factory=lambda: list(DEFAULT_LABEL_WORDS), min_length=1)
    context_window: PositiveInt = DEFAULT_CONTEXT_WINDOW
    prompt_window: PositiveInt = 90
    label_window: PositiveInt = 80
    mapping_batch_size: PositiveInt = 40
    mapping_timeout_seconds: PositiveFloat = 20.0
    mapping_max_workers: PositiveInt = 4
    detection_chunk_size: PositiveInt = 25000
    detection_chunk_overlap: int = Field(default=1000, ge=0)
    summary_input_chars: PositiveInt = 2000
    oracle_model: str = "gpt-4o-mini"
    oracle_timeout_seconds: PositiveFloat = 60.0

    @model_validator(mode="after")
    def _check_chunking(self) -> FillSettings:
        if self.detection_chunk_overlap >= self.detection_chunk_size:
            raise ValueError("detection_chunk_overlap must be smaller than detection_chunk_size")
        return self
