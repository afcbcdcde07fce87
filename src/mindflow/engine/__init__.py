"""Score engine: configuration table, entropy classifier, level policy, state machine."""

from mindflow.engine.config import CategoryProfile, EngineConfig, load_engine_config
from mindflow.engine.entropy import EntropyReading, compute_entropy
from mindflow.engine.levels import LevelBand, LevelPolicy
from mindflow.engine.score import ScoreEngine, SessionState

__all__ = [
    "CategoryProfile",
    "EngineConfig",
    "EntropyReading",
    "LevelBand",
    "LevelPolicy",
    "ScoreEngine",
    "SessionState",
    "compute_entropy",
    "load_engine_config",
]
