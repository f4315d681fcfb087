"""k1s0 featureflag library."""

from .changes import (
    ApplyResult,
    Change,
    ChangeBatch,
    ChangesPage,
    ChangeType,
    FlagRemoved,
    FlagSnapshot,
    FlagUpserted,
    ListRemoved,
    ListUpserted,
    ResyncRequired,
    apply_changes,
    parse_stream_message,
)
from .channels import EventChannel, FlagsUpdated, UpdateKind
from .client import EvaluatingClient, FeatureFlagClientProtocol
from .config import FeatureFlagConfig, load_config
from .evaluator import Evaluator, Resolution
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .hashing import get_bucket, hash_member
from .http_client import HttpFeatureFlagClient
from .http_loader import HttpLoader
from .loader import Loader
from .memory import InMemoryFeatureFlagClient
from .models import (
    BooleanFlag,
    ClientStatus,
    Condition,
    EvaluationContext,
    EvaluationMode,
    EvaluationResult,
    EvaluationSource,
    Flag,
    FlagDefinitions,
    FlagList,
    FlagType,
    ListInfo,
    NumberFlag,
    ObjectFlag,
    Operator,
    Rule,
    StringFlag,
    Target,
    TargetVariant,
    Variant,
)
from .store import FlagStore, ListStore
from .synchronizer import Synchronizer, SyncOutcome, SyncState
from .telemetry import EvaluationRecord, InMemoryTelemetrySink, NoopTelemetrySink, TelemetrySink

__all__ = [
    "ApplyResult",
    "BooleanFlag",
    "Change",
    "ChangeBatch",
    "ChangeType",
    "ChangesPage",
    "ClientStatus",
    "Condition",
    "EvaluatingClient",
    "EvaluationContext",
    "EvaluationMode",
    "EvaluationRecord",
    "EvaluationResult",
    "EvaluationSource",
    "Evaluator",
    "EventChannel",
    "FeatureFlagClientProtocol",
    "FeatureFlagConfig",
    "FeatureFlagError",
    "FeatureFlagErrorCodes",
    "Flag",
    "FlagDefinitions",
    "FlagList",
    "FlagRemoved",
    "FlagSnapshot",
    "FlagStore",
    "FlagType",
    "FlagUpserted",
    "FlagsUpdated",
    "HttpFeatureFlagClient",
    "HttpLoader",
    "InMemoryFeatureFlagClient",
    "InMemoryTelemetrySink",
    "ListInfo",
    "ListRemoved",
    "ListStore",
    "ListUpserted",
    "Loader",
    "NoopTelemetrySink",
    "NumberFlag",
    "ObjectFlag",
    "Operator",
    "Resolution",
    "ResyncRequired",
    "Rule",
    "StringFlag",
    "SyncOutcome",
    "SyncState",
    "Synchronizer",
    "Target",
    "TargetVariant",
    "TelemetrySink",
    "UpdateKind",
    "Variant",
    "apply_changes",
    "get_bucket",
    "hash_member",
    "load_config",
    "parse_stream_message",
]
