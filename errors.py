"""
Exception taxonomy for the annotation pipeline.

Fatal errors (abort the job, status -> failed):
  - ScanError           — no usable link anywhere in the document
  - ProviderTimeout     — bulk-async polling exceeded its bound
  - InfrastructureError — blob store / job store failure
  - ConfigurationError  — selected provider mode is missing credentials

Non-fatal errors (absorbed where they are raised):
  - LayoutAmbiguity     — classifier falls back to vertical
  - PlacementConflict   — link record is marked skipped
  - ProviderError       — affected links get an ``Error`` outcome
"""


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""


class ScanError(PipelineError):
    pass


class LayoutAmbiguity(PipelineError):
    pass


class PlacementConflict(PipelineError):
    pass


class ProviderError(PipelineError):
    pass


class ProviderTimeout(PipelineError):
    # Not a ProviderError: the per-batch handler must let this through.
    pass


class InfrastructureError(PipelineError):
    pass


class ConfigurationError(PipelineError):
    pass


class InvalidTransition(PipelineError):
    """A pause / resume / cancel request that is illegal from the current status."""
