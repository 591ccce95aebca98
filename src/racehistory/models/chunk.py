"""Chunk manifest models for paginated result sets."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ChunkInfo(BaseModel):
    """Manifest of independently downloadable result pages."""

    model_config = ConfigDict(frozen=True)

    chunk_size: int | None = None
    num_chunks: int | None = None
    rows: int = 0
    base_download_url: str = ""
    chunk_file_names: list[str] = Field(default_factory=list)


class SearchData(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    chunk_info: ChunkInfo = Field(default_factory=ChunkInfo)


class SearchResponse(BaseModel):
    """Envelope returned by search endpoints such as ``search_series``."""

    model_config = ConfigDict(frozen=True)

    type: str | None = None
    data: SearchData
