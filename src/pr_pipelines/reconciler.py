"""Pull request to pipeline reconciliation.

This module maps a pull request lifecycle event onto the pipeline that
should (or should not) exist for it, and converges CodePipeline towards
that desired state with at most one mutation:

    open   + absent  -> create pr-<number> from the template
    open   + present -> nothing
    closed + present -> delete pr-<number>
    closed + absent  -> nothing

The reconciler keeps no state between invocations. CodePipeline is the only
source of truth and the only synchronisation point, so duplicate or
concurrent deliveries are made safe by treating "already exists" on create
and "not found" on delete as benign outcomes of a lost race.

Existence that cannot be determined is never treated as absence: the
invocation stops with an error instead of guessing.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .codepipeline.client import (
    PipelineAlreadyExistsError,
    PipelineNotFoundError,
    PipelineServiceClient,
    PipelineServiceError,
)
from .codepipeline.models import ExistenceCheck, PipelineExistence
from .config import MissingCredentialError, UnknownStatePolicy
from .webhook.models import PullRequestEvent, PullRequestState

logger = logging.getLogger(__name__)

PIPELINE_NAME_PREFIX = "pr-"


def pipeline_name(number: int) -> str:
    """Return the pipeline name for a pull request number.

    Args:
        number: The pull request number.

    Returns:
        str: "pr-<number>", e.g. "pr-42".

    Raises:
        ValueError: If number is not a positive integer.
    """
    if isinstance(number, bool) or not isinstance(number, int):
        raise ValueError(f"pull request number must be an integer, got {number!r}")
    if number <= 0:
        raise ValueError(f"pull request number must be positive, got {number}")
    return f"{PIPELINE_NAME_PREFIX}{number}"


class ReconcileAction(str, Enum):
    """Mutation performed against CodePipeline.

    Attributes:
        CREATE: A pipeline was cloned from the template.
        DESTROY: A pipeline was deleted.
        NONE: CodePipeline was left untouched.
    """

    CREATE = "create"
    DESTROY = "destroy"
    NONE = "none"


@dataclass
class ReconciliationOutcome:
    """Result of reconciling a single pull request event.

    Attributes:
        pipeline: Name of the pipeline reconciled.
        action: The mutation actually performed.
        ok: False when the invocation must report an in-band error.
        error: Error message when ok is False.
        detail: Extra context for successful no-ops (lost races, ignored states).
    """

    pipeline: str
    action: ReconcileAction
    ok: bool = True
    error: Optional[str] = None
    detail: Optional[str] = None


class Reconciler:
    """Converges CodePipeline with the state of a pull request.

    Attributes:
        client: CodePipeline client used for existence checks and mutations.
        template_name: Name of the template pipeline clones are built from.
        unknown_state_policy: How pull request states other than open and
            closed are reported.
    """

    def __init__(
        self,
        client: PipelineServiceClient,
        template_name: str,
        oauth_token_provider: Callable[[], str],
        unknown_state_policy: UnknownStatePolicy = UnknownStatePolicy.IGNORE,
        metrics=None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            client: CodePipeline client.
            template_name: Template pipeline name.
            oauth_token_provider: Returns the GitHub OAuth token, raising
                MissingCredentialError when none is configured. Only called
                when a pipeline is about to be created.
            unknown_state_policy: Treatment of unrecognised states.
            metrics: Optional ControllerMetrics.
        """
        self.client = client
        self.template_name = template_name
        self.unknown_state_policy = UnknownStatePolicy(unknown_state_policy)
        self._oauth_token_provider = oauth_token_provider
        self._metrics = metrics

    def reconcile(self, event: PullRequestEvent) -> ReconciliationOutcome:
        """Reconcile the pipeline of one pull request event.

        Args:
            event: The parsed pull request event.

        Returns:
            ReconciliationOutcome describing what was done.

        Raises:
            TemplateConfigurationError: If the template cannot be cloned.
                This is a configuration fault and is left to the caller.
        """
        target = pipeline_name(event.number)
        state = event.lifecycle_state

        if state is PullRequestState.OPEN:
            outcome = self._ensure_present(target, event.head_branch)
        elif state is PullRequestState.CLOSED:
            outcome = self._ensure_absent(target)
        else:
            outcome = self._unknown_state(target, event.state)

        logger.info(
            "Reconciled %s: state=%s, action=%s, ok=%s",
            target,
            event.state,
            outcome.action.value,
            outcome.ok,
        )
        if self._metrics is not None:
            self._metrics.record_reconciliation(outcome.action.value, outcome.ok)
        return outcome

    def _ensure_present(self, target: str, branch: str) -> ReconciliationOutcome:
        check = self.client.check_pipeline(target)
        if check.existence is PipelineExistence.UNKNOWN:
            return self._unknown_existence(check)
        if check.existence is PipelineExistence.PRESENT:
            return ReconciliationOutcome(
                pipeline=target,
                action=ReconcileAction.NONE,
                detail="pipeline already exists",
            )

        try:
            oauth_token = self._oauth_token_provider()
        except MissingCredentialError as e:
            logger.error("Refusing to create %s: %s", target, e)
            return ReconciliationOutcome(
                pipeline=target,
                action=ReconcileAction.NONE,
                ok=False,
                error=f"missing credential: {e}",
            )

        try:
            self.client.clone_pipeline(self.template_name, target, branch, oauth_token)
        except PipelineAlreadyExistsError:
            # A concurrent delivery for the same pull request created it first
            logger.info("Pipeline %s was created concurrently", target)
            return ReconciliationOutcome(
                pipeline=target,
                action=ReconcileAction.NONE,
                detail="pipeline created by a concurrent invocation",
            )
        except PipelineServiceError as e:
            logger.error("Failed to create pipeline %s: %s", target, e)
            return ReconciliationOutcome(
                pipeline=target,
                action=ReconcileAction.NONE,
                ok=False,
                error=f"failed to create pipeline {target}: {e}",
            )

        return ReconciliationOutcome(pipeline=target, action=ReconcileAction.CREATE)

    def _ensure_absent(self, target: str) -> ReconciliationOutcome:
        check = self.client.check_pipeline(target)
        if check.existence is PipelineExistence.UNKNOWN:
            return self._unknown_existence(check)
        if check.existence is PipelineExistence.ABSENT:
            return ReconciliationOutcome(
                pipeline=target,
                action=ReconcileAction.NONE,
                detail="pipeline does not exist",
            )

        try:
            self.client.destroy_pipeline(target)
        except PipelineNotFoundError:
            logger.info("Pipeline %s was deleted concurrently", target)
            return ReconciliationOutcome(
                pipeline=target,
                action=ReconcileAction.NONE,
                detail="pipeline deleted by a concurrent invocation",
            )
        except PipelineServiceError as e:
            logger.error("Failed to delete pipeline %s: %s", target, e)
            return ReconciliationOutcome(
                pipeline=target,
                action=ReconcileAction.NONE,
                ok=False,
                error=f"failed to destroy pipeline {target}: {e}",
            )

        return ReconciliationOutcome(pipeline=target, action=ReconcileAction.DESTROY)

    def _unknown_existence(self, check: ExistenceCheck) -> ReconciliationOutcome:
        return ReconciliationOutcome(
            pipeline=check.name,
            action=ReconcileAction.NONE,
            ok=False,
            error=f"unable to determine whether pipeline {check.name} exists: {check.error}",
        )

    def _unknown_state(self, target: str, state: str) -> ReconciliationOutcome:
        if self.unknown_state_policy is UnknownStatePolicy.REJECT:
            logger.warning("Rejecting unhandled pull request state %s for %s", state, target)
            return ReconciliationOutcome(
                pipeline=target,
                action=ReconcileAction.NONE,
                ok=False,
                error=f"unhandled pull request state {state}",
            )

        logger.info("Ignoring pull request state %s for %s", state, target)
        return ReconciliationOutcome(
            pipeline=target,
            action=ReconcileAction.NONE,
            detail=f"ignored pull request state {state}",
        )
