"""Dispatch of ticket generation jobs to the external generator."""

from .backoff import BackoffPolicy  # noqa: F401
from .dispatcher import (  # noqa: F401
    DispatchOutcome,
    DispatchResult,
    GenerationDispatcher,
    get_generation_dispatcher,
    set_generation_dispatcher,
)
from .transport import (  # noqa: F401
    GeneratorRejectedError,
    GeneratorTransport,
    GeneratorUnavailableError,
    HttpGeneratorTransport,
    NullGeneratorTransport,
    SqsGeneratorTransport,
)
