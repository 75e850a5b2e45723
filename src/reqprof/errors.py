"""
Exceptions raised by reqprof.
"""


class ReqProfError(Exception):
    """Base class of every reqprof error."""


class EngineConfigurationError(ReqProfError):
    """
    The profiling engine could not be configured for this process.
    This is fatal: requests must not be served with profiling silently off.
    """


class EngineError(ReqProfError):
    """The profiling engine failed to begin, end or write a profile."""


class SessionStartError(EngineError):
    """A session could not be started, the request runs unprofiled."""


class SessionStateError(RuntimeError):
    """An illegal session lifecycle transition was attempted."""
