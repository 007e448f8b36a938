"""CodePipeline client for checking, cloning and destroying pipelines."""

import logging
import time
from typing import Any, Callable, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .models import ExistenceCheck, PipelineExistence, PipelineTemplate

logger = logging.getLogger(__name__)

PIPELINE_NOT_FOUND = "PipelineNotFoundException"
PIPELINE_NAME_IN_USE = "PipelineNameInUseException"

TRANSIENT_ERROR_CODES = frozenset([
    "ThrottlingException",
    "Throttling",
    "RequestLimitExceeded",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "InternalFailure",
    "InternalServerError",
])


class PipelineServiceError(Exception):
    """Base exception for CodePipeline errors."""

    def __init__(self, message: str, error_code: str = ""):
        super().__init__(message)
        self.error_code = error_code


class PipelineNotFoundError(PipelineServiceError):
    """Raised when the named pipeline does not exist."""
    pass


class PipelineAlreadyExistsError(PipelineServiceError):
    """Raised when creating a pipeline whose name is already taken."""
    pass


class PipelineServiceThrottlingError(PipelineServiceError):
    """Raised when transient errors persist after all retries."""
    pass


class PipelineServiceConnectionError(PipelineServiceError):
    """Raised for connection failures and other CodePipeline errors."""
    pass


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


def _error_message(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Message', str(error))


def _is_transient(error: ClientError) -> bool:
    if _error_code(error) in TRANSIENT_ERROR_CODES:
        return True
    status = error.response.get('ResponseMetadata', {}).get('HTTPStatusCode', 0)
    return isinstance(status, int) and status >= 500


class PipelineServiceClient:
    """
    Client for the CodePipeline operations the controller needs.

    Every call is retried with exponential backoff when CodePipeline reports
    a transient error (throttling, 5xx). Other errors are mapped onto the
    PipelineServiceError hierarchy and raised immediately.
    """

    def __init__(
        self,
        codepipeline_client=None,
        max_retries: int = 3,
        initial_backoff: float = 0.1,
        max_backoff: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        metrics=None,
    ):
        """
        Initialize PipelineServiceClient.

        Args:
            codepipeline_client: Optional boto3 CodePipeline client (for testing)
            max_retries: Attempts per call for transient errors
            initial_backoff: First retry delay in seconds
            max_backoff: Upper bound for a retry delay in seconds
            sleep: Function used to wait between attempts
            metrics: Optional ControllerMetrics recording remote errors
        """
        self._codepipeline = codepipeline_client or boto3.client('codepipeline')
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._sleep = sleep
        self._metrics = metrics

    @classmethod
    def from_settings(cls, settings, metrics=None) -> "PipelineServiceClient":
        """
        Build a client from ControllerSettings.

        botocore's own retries are disabled so that the settings' retry
        policy is the only one applied.
        """
        config = Config(
            connect_timeout=settings.connect_timeout,
            read_timeout=settings.read_timeout,
            retries={'max_attempts': 1, 'mode': 'standard'},
        )
        codepipeline = boto3.client(
            'codepipeline',
            region_name=settings.aws_region,
            config=config,
        )
        return cls(
            codepipeline_client=codepipeline,
            max_retries=settings.max_retries,
            initial_backoff=settings.initial_backoff,
            max_backoff=settings.max_backoff,
            metrics=metrics,
        )

    def _backoff_delay(self, attempt: int) -> float:
        return min(self.initial_backoff * (2 ** attempt), self.max_backoff)

    def _call(self, operation_name: str, **kwargs) -> Dict[str, Any]:
        """
        Execute a CodePipeline operation with exponential backoff retry.

        Args:
            operation_name: boto3 method name, e.g. "get_pipeline"
            **kwargs: Keyword arguments for the operation

        Returns:
            The operation response

        Raises:
            PipelineNotFoundError: If the pipeline does not exist
            PipelineAlreadyExistsError: If the pipeline name is taken
            PipelineServiceThrottlingError: If transient errors persist
            PipelineServiceConnectionError: For any other failure
        """
        operation = getattr(self._codepipeline, operation_name)

        for attempt in range(self.max_retries):
            try:
                return operation(**kwargs)
            except ClientError as e:
                error_code = _error_code(e)
                # an absent pipeline is an expected answer to get_pipeline
                if not (operation_name == "get_pipeline" and error_code == PIPELINE_NOT_FOUND):
                    self._record_error(operation_name, error_code or "Unknown")

                if _is_transient(e):
                    if attempt < self.max_retries - 1:
                        delay = self._backoff_delay(attempt)
                        logger.warning(
                            "Transient CodePipeline error on %s (%s), retrying in %.2fs",
                            operation_name, error_code, delay,
                        )
                        self._sleep(delay)
                        continue
                    raise PipelineServiceThrottlingError(
                        f"CodePipeline {operation_name} still failing after "
                        f"{self.max_retries} retries: {error_code}",
                        error_code,
                    ) from e

                if error_code == PIPELINE_NOT_FOUND:
                    raise PipelineNotFoundError(_error_message(e), error_code) from e
                if error_code == PIPELINE_NAME_IN_USE:
                    raise PipelineAlreadyExistsError(_error_message(e), error_code) from e
                raise PipelineServiceConnectionError(
                    f"CodePipeline error: {error_code} - {_error_message(e)}",
                    error_code,
                ) from e
            except BotoCoreError as e:
                self._record_error(operation_name, type(e).__name__)
                raise PipelineServiceConnectionError(
                    f"CodePipeline connection error: {str(e)}",
                    type(e).__name__,
                ) from e

        # max_retries < 1 means no attempt was made
        raise PipelineServiceConnectionError(
            f"CodePipeline {operation_name} was not attempted"
        )

    def _record_error(self, operation_name: str, error_code: str) -> None:
        if self._metrics is not None:
            self._metrics.record_remote_error(operation_name, error_code)

    def check_pipeline(self, name: str) -> ExistenceCheck:
        """
        Check whether a pipeline exists.

        Only PipelineNotFoundException counts as confirmed absence. Any other
        failure yields UNKNOWN so the caller can refuse to act on a guess.

        Args:
            name: Pipeline name

        Returns:
            ExistenceCheck with PRESENT, ABSENT or UNKNOWN
        """
        try:
            response = self._call('get_pipeline', name=name)
        except PipelineNotFoundError:
            return ExistenceCheck(name=name, existence=PipelineExistence.ABSENT)
        except PipelineServiceError as e:
            logger.error("Could not determine whether pipeline %s exists: %s", name, e)
            return ExistenceCheck(
                name=name,
                existence=PipelineExistence.UNKNOWN,
                error=str(e),
            )

        if response.get('pipeline'):
            return ExistenceCheck(name=name, existence=PipelineExistence.PRESENT)
        return ExistenceCheck(
            name=name,
            existence=PipelineExistence.UNKNOWN,
            error="GetPipeline response contained no pipeline",
        )

    def get_template(self, name: str) -> PipelineTemplate:
        """
        Fetch a pipeline declaration to clone from.

        Raises:
            PipelineServiceError: If the template cannot be fetched
            TemplateConfigurationError: If the declaration is unusable
        """
        response = self._call('get_pipeline', name=name)
        return PipelineTemplate.from_declaration(response.get('pipeline'))

    def clone_pipeline(self, source: str, target: str, branch: str, oauth_token: str) -> None:
        """
        Create a pipeline from the source template, tracking a branch.

        Args:
            source: Template pipeline name
            target: Name of the pipeline to create
            branch: Branch for the source action
            oauth_token: GitHub OAuth token for the source action

        Raises:
            PipelineAlreadyExistsError: If the target already exists
            PipelineServiceError: For other CodePipeline failures
            TemplateConfigurationError: If the template has no source action
        """
        template = self.get_template(source)
        declaration = template.to_declaration(target, oauth_token, branch)

        logger.info("Creating pipeline %s from %s for branch %s", target, source, branch)
        self._call('create_pipeline', pipeline=declaration)

    def destroy_pipeline(self, name: str) -> None:
        """
        Delete a pipeline.

        Raises:
            PipelineNotFoundError: If the pipeline does not exist
            PipelineServiceError: For other CodePipeline failures
        """
        logger.info("Deleting pipeline %s", name)
        self._call('delete_pipeline', name=name)
