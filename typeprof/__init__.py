"""typeprof: a type-error profiler for multiple-dispatch programs"""

__version__ = "0.1.0"

from typeprof.config import ProfilerConfig, load_config
from typeprof.errors import EngineError, ErrorEvent, ErrorKind
from typeprof.report import ErrorNode, Report
from typeprof.session import ProfileSession, profile, profile_and_watch

__all__ = [
    "ProfilerConfig", "load_config",
    "EngineError", "ErrorEvent", "ErrorKind",
    "ErrorNode", "Report",
    "ProfileSession", "profile", "profile_and_watch",
]
