"""cbzin - comic archive image format converter CLI tool."""

import logging

from cbzin.config import ConversionConfig
from cbzin.converter.formats import ImageFormat
from cbzin.logger import (
    LogConfig,
    ProgressDisplay,
    RunLogger,
    VerboseLevel,
)
from cbzin.pipeline import (
    ConversionPipeline,
    InputMode,
    PipelineConfig,
    PipelineResult,
)

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ConversionConfig",
    "ConversionPipeline",
    "ImageFormat",
    "InputMode",
    "LogConfig",
    "PipelineConfig",
    "PipelineResult",
    "ProgressDisplay",
    "RunLogger",
    "VerboseLevel",
]
