"""aimux engine: session and subprocess orchestration for partner calls."""
from .models import (
    BlockingCode,
    BlockingOutcome,
    LogRecord,
    Origin,
    OutputFormat,
    SessionContext,
    SessionMode,
    Tag,
    format_tag,
    new_id,
    parse_tag,
    signature,
)
from .config import EngineConfig
from .errors import (
    AimuxError,
    ConfigError,
    ConversationNotFoundError,
    InvalidParameterError,
    LifecycleError,
    LineTooLongError,
    LogCorruptError,
    PipeCreationError,
    PolicyDeniedError,
    ProcessExitError,
    ProcessTimeoutError,
    ResolutionError,
    SinkWriteError,
    SpawnError,
    StreamClosedError,
    StreamError,
    StreamReadError,
    UnknownGenusError,
)
from .policy import ensure_allowed, validate
from .store import SessionStore
from .resolver import SessionPlan, SessionResolver
from .process import LazyProcessStream, prepare
from .interpreter import DrainState, StreamInterpreter
from .flow import prepare_call, run_call

__all__ = [
    # Models
    "BlockingCode",
    "BlockingOutcome",
    "LogRecord",
    "Origin",
    "OutputFormat",
    "SessionContext",
    "SessionMode",
    "Tag",
    "format_tag",
    "new_id",
    "parse_tag",
    "signature",
    # Config
    "EngineConfig",
    # Errors
    "AimuxError",
    "ConfigError",
    "ConversationNotFoundError",
    "InvalidParameterError",
    "LifecycleError",
    "LineTooLongError",
    "LogCorruptError",
    "PipeCreationError",
    "PolicyDeniedError",
    "ProcessExitError",
    "ProcessTimeoutError",
    "ResolutionError",
    "SinkWriteError",
    "SpawnError",
    "StreamClosedError",
    "StreamError",
    "StreamReadError",
    "UnknownGenusError",
    # Components
    "ensure_allowed",
    "validate",
    "SessionStore",
    "SessionPlan",
    "SessionResolver",
    "LazyProcessStream",
    "prepare",
    "DrainState",
    "StreamInterpreter",
    "prepare_call",
    "run_call",
]
