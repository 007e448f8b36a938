"""AWS CodePipeline access for the pipeline controller."""

from .client import (
    PipelineAlreadyExistsError,
    PipelineNotFoundError,
    PipelineServiceClient,
    PipelineServiceConnectionError,
    PipelineServiceError,
    PipelineServiceThrottlingError,
)
from .models import (
    ExistenceCheck,
    PipelineExistence,
    PipelineTemplate,
    TemplateConfigurationError,
)

__all__ = [
    "ExistenceCheck",
    "PipelineAlreadyExistsError",
    "PipelineExistence",
    "PipelineNotFoundError",
    "PipelineServiceClient",
    "PipelineServiceConnectionError",
    "PipelineServiceError",
    "PipelineServiceThrottlingError",
    "PipelineTemplate",
    "TemplateConfigurationError",
]
