"""Service abstractions for the labprofile pipeline."""

from .idconv import IdConverter
from .ncbi import NcbiApiError
from .orcid import OrcidApiError, OrcidClient
from .pipeline import (
    PipelineError,
    PipelineOptions,
    PipelineResult,
    ProfilePipeline,
    build_pipeline,
)
from .pmc import PmcMethodsFetcher
from .pubmed import PubMedClient
from .runner import PipelineBusyError, PipelineRunner
from .status import PipelineStatusTracker, get_status_tracker
from .storage import ProfileStorage, SqlProfileStorage
from .synthesis import NullSynthesizer, ProfileSynthesizer
from .throttle import RequestThrottle

__all__ = [
    "IdConverter",
    "NcbiApiError",
    "OrcidApiError",
    "OrcidClient",
    "PipelineError",
    "PipelineOptions",
    "PipelineResult",
    "ProfilePipeline",
    "build_pipeline",
    "PmcMethodsFetcher",
    "PubMedClient",
    "PipelineBusyError",
    "PipelineRunner",
    "PipelineStatusTracker",
    "get_status_tracker",
    "ProfileStorage",
    "SqlProfileStorage",
    "NullSynthesizer",
    "ProfileSynthesizer",
    "RequestThrottle",
]
