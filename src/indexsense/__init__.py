"""IndexSense - index utilization scoring and drop simulation advisor for MySQL and PostgreSQL."""

__version__ = "0.1.0"
__license__ = "MIT"

# Exception hierarchy (import first so other modules can use it)
from indexsense.exceptions import (
    IndexSenseError,
    MetadataLoadError,
    SimulationError,
    PersistError,
    ConfigurationError,
    SnapshotError,
)

from indexsense.dialect import Dialect, is_primary_index, quote_ident
from indexsense.models import (
    AnalysisSnapshot,
    ColumnSuggestion,
    IndexGroup,
    IndexNameSuggestion,
    IndexRow,
    IndexScore,
    IndexView,
    QueryDiff,
    ScoringConfig,
    Signal,
    SignalLabel,
    SimulationResult,
    SizeStat,
    TableStats,
    UsageStat,
)
from indexsense.grouping import group_index_rows
from indexsense.suggestions import SuggestionIndex, build_suggestion_index
from indexsense.signals import classify_index
from indexsense.scoring import ScoringEngine, normalize_metric, weighted_avg
from indexsense.calibration import CalibrationStore, InMemoryStore, JsonFileStore
from indexsense.drop_plan import build_drop_plan, build_drop_statement, parse_drop_statement
from indexsense.simulation import (
    BatchState,
    SelectionSummary,
    SimulationBatch,
    SimulationOrchestrator,
    SimulationProvider,
    summarize_selection,
)
from indexsense.advisor import IndexAdvisor, build_index_views, load_snapshot
from indexsense.config import Config, Environment, get_config

__all__ = [
    # Exception hierarchy
    "IndexSenseError",
    "MetadataLoadError",
    "SimulationError",
    "PersistError",
    "ConfigurationError",
    "SnapshotError",
    # Dialects
    "Dialect",
    "is_primary_index",
    "quote_ident",
    # Models
    "AnalysisSnapshot",
    "ColumnSuggestion",
    "IndexGroup",
    "IndexNameSuggestion",
    "IndexRow",
    "IndexScore",
    "IndexView",
    "QueryDiff",
    "ScoringConfig",
    "Signal",
    "SignalLabel",
    "SimulationResult",
    "SizeStat",
    "TableStats",
    "UsageStat",
    # Classification & scoring
    "group_index_rows",
    "SuggestionIndex",
    "build_suggestion_index",
    "classify_index",
    "ScoringEngine",
    "normalize_metric",
    "weighted_avg",
    # Calibration
    "CalibrationStore",
    "InMemoryStore",
    "JsonFileStore",
    # Drop plans
    "build_drop_plan",
    "build_drop_statement",
    "parse_drop_statement",
    # Simulation
    "BatchState",
    "SelectionSummary",
    "SimulationBatch",
    "SimulationOrchestrator",
    "SimulationProvider",
    "summarize_selection",
    # Orchestration
    "IndexAdvisor",
    "build_index_views",
    "load_snapshot",
    # Configuration
    "Config",
    "Environment",
    "get_config",
    # Metadata
    "__version__",
    "__license__",
]
