"""
Error taxonomy for the processing pipeline.

SourceError      -> job-fatal, the job ends Failed with the error text.
OperationError   -> operation-fatal, the operation is dropped from results.
PersistenceError -> logged by the worker, never retried.
BootstrapError   -> process-fatal after bounded connection attempts.
"""


class PipelineError(Exception):
    """Base class for everything raised by the pipeline."""


# ---------- Source acquisition (job-fatal) ----------

class SourceError(PipelineError):
    pass


class SourceNotReachable(SourceError):
    pass


class SourceNotFound(SourceError):
    pass


class SourceDecodeError(SourceError):
    pass


# ---------- Per-operation (operation-fatal) ----------

class OperationError(PipelineError):
    pass


class BadParameters(OperationError):
    pass


class EncodeFailure(OperationError):
    pass


class UploadFailure(OperationError):
    pass


# ---------- Stores / startup ----------

class PersistenceError(PipelineError):
    pass


class BootstrapError(PipelineError):
    pass


class ObjectNotFound(PipelineError):
    """Raised by object-store backends when a key does not exist."""


# ---------- Envelope ----------

class MalformedJob(PipelineError):
    """Message payload could not be decoded into a Job. Not retryable."""


class InvalidTransition(PipelineError):
    pass
