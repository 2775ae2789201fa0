"""Public surface for the AceData Suno integration."""
from .client import AceDataAPIError, AceDataConfigError, AceDataContractError, AceDataSunoClient
from .schemas import AudioRecord, GenerationTask, LyricResult, Models, parse_lyrics

__all__ = [
    "AceDataAPIError",
    "AceDataConfigError",
    "AceDataContractError",
    "AceDataSunoClient",
    "AudioRecord",
    "GenerationTask",
    "LyricResult",
    "Models",
    "parse_lyrics",
]
