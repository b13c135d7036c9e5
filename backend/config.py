"""
Stream configuration — which engine to read from and how to filter it.

Example config/stream.yml:

    engine: dump
    dump_file: data/rrc00-rib.txt
    intervals:
      - begin: 1567756800
        end: 1567756801
    filters:
      - collector rrc00 and type ribs
    limit: 10
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from engines import RetrievalEngine


class IntervalConfig(BaseModel):
    begin: int = Field(ge=0)
    end: int = Field(default=0, ge=0)   # 0 = unbounded


class StreamConfig(BaseModel):
    engine: Literal["dump", "pybgpstream"] = "pybgpstream"
    dump_file: Optional[str] = None
    filters: list[str] = Field(default_factory=list)
    intervals: list[IntervalConfig] = Field(default_factory=list)
    limit: Optional[int] = Field(default=None, ge=0)


def load_stream_config(path: str | Path) -> StreamConfig:
    """Load a StreamConfig from YAML. Relative dump_file paths resolve against the file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Stream config not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a mapping, got {type(raw).__name__}")

    try:
        config = StreamConfig.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(f"{path}: {exc}") from exc

    if config.dump_file and not Path(config.dump_file).is_absolute():
        config.dump_file = str(path.parent / config.dump_file)
    return config


def build_engine(config: StreamConfig) -> RetrievalEngine:
    if config.engine == "dump":
        if not config.dump_file:
            raise ValueError("dump engine needs dump_file")
        from engines.dump_engine import DumpFileEngine
        return DumpFileEngine(config.dump_file)

    from engines.pybgpstream_engine import PyBGPStreamEngine
    return PyBGPStreamEngine()
