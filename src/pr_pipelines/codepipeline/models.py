"""CodePipeline data models for the pipeline controller.

This module defines:
- PipelineExistence: Three-valued outcome of an existence check
- ExistenceCheck: Result of querying CodePipeline for a pipeline name
- PipelineTemplate: The template declaration per-pull-request pipelines are
  cloned from

Clones are built with value semantics: every declaration produced by
PipelineTemplate.to_declaration owns a deep copy of the template stages,
so the source action overrides of one pull request never reach the
template or another clone.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

OAUTH_TOKEN_KEY = "OAuthToken"
BRANCH_KEY = "Branch"

# Declaration keys copied verbatim from the template when present
_PASSTHROUGH_KEYS = ("pipelineType", "executionMode", "variables", "triggers")


class TemplateConfigurationError(Exception):
    """Raised when the template pipeline cannot be cloned.

    This is a configuration error: retrying will not fix it.
    """


class PipelineExistence(str, Enum):
    """Outcome of checking whether a pipeline exists.

    Attributes:
        PRESENT: CodePipeline returned the pipeline.
        ABSENT: CodePipeline confirmed the pipeline does not exist.
        UNKNOWN: The query failed; existence could not be determined.
    """

    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"


@dataclass
class ExistenceCheck:
    """Result of a pipeline existence check."""
    name: str
    existence: PipelineExistence
    error: Optional[str] = None

    @property
    def exists(self) -> bool:
        return self.existence is PipelineExistence.PRESENT

    @property
    def known(self) -> bool:
        return self.existence is not PipelineExistence.UNKNOWN


@dataclass(frozen=True)
class PipelineTemplate:
    """Read-only template pipeline declaration.

    Attributes:
        name: Name of the template pipeline.
        role_arn: Service role assumed by cloned pipelines.
        stages: Ordered stage declarations. The first action of the first
                stage must be the source action.
        artifact_store: Single-region artifact store, if used.
        artifact_stores: Per-region artifact stores, if used.
        extras: Optional declaration keys (pipelineType, variables, ...)
                carried over to clones unchanged.
    """
    name: str
    role_arn: str
    stages: List[Dict[str, Any]]
    artifact_store: Optional[Dict[str, Any]] = None
    artifact_stores: Optional[Dict[str, Any]] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_declaration(cls, declaration: Dict[str, Any]) -> "PipelineTemplate":
        """
        Build a template from a CodePipeline pipeline declaration.

        Args:
            declaration: The "pipeline" member of a GetPipeline response

        Returns:
            PipelineTemplate holding its own copy of the declaration

        Raises:
            TemplateConfigurationError: If required members are missing
        """
        if not isinstance(declaration, dict):
            raise TemplateConfigurationError("Template declaration must be an object")

        name = declaration.get("name")
        role_arn = declaration.get("roleArn")
        stages = declaration.get("stages")

        if not name:
            raise TemplateConfigurationError("Template declaration has no name")
        if not role_arn:
            raise TemplateConfigurationError(f"Template {name} has no roleArn")
        if not isinstance(stages, list) or not stages:
            raise TemplateConfigurationError(f"Template {name} has no stages")

        artifact_store = declaration.get("artifactStore")
        artifact_stores = declaration.get("artifactStores")
        if not artifact_store and not artifact_stores:
            raise TemplateConfigurationError(f"Template {name} has no artifact store")

        extras = {
            key: copy.deepcopy(declaration[key])
            for key in _PASSTHROUGH_KEYS
            if declaration.get(key) is not None
        }

        return cls(
            name=name,
            role_arn=role_arn,
            stages=copy.deepcopy(stages),
            artifact_store=copy.deepcopy(artifact_store) if artifact_store else None,
            artifact_stores=copy.deepcopy(artifact_stores) if artifact_stores else None,
            extras=extras,
        )

    def to_declaration(self, target_name: str, oauth_token: str, branch: str) -> Dict[str, Any]:
        """
        Build the declaration of a pipeline cloned from this template.

        The source action (first action of the first stage) gets its
        OAuthToken and Branch configuration entries overwritten.

        Args:
            target_name: Name of the new pipeline
            oauth_token: GitHub OAuth token for the source action
            branch: Branch the new pipeline tracks

        Returns:
            A CreatePipeline "pipeline" argument sharing no mutable state
            with this template

        Raises:
            TemplateConfigurationError: If the template has no source action
                with a configuration map
        """
        stages = copy.deepcopy(self.stages)
        configuration = self._source_configuration(stages)
        configuration[OAUTH_TOKEN_KEY] = oauth_token
        configuration[BRANCH_KEY] = branch

        declaration: Dict[str, Any] = {
            "name": target_name,
            "roleArn": self.role_arn,
            "stages": stages,
        }
        if self.artifact_store:
            declaration["artifactStore"] = copy.deepcopy(self.artifact_store)
        if self.artifact_stores:
            declaration["artifactStores"] = copy.deepcopy(self.artifact_stores)
        for key, value in self.extras.items():
            declaration[key] = copy.deepcopy(value)
        return declaration

    def _source_configuration(self, stages: List[Dict[str, Any]]) -> Dict[str, Any]:
        first_stage = stages[0] if stages else None
        if not isinstance(first_stage, dict):
            raise TemplateConfigurationError(f"Template {self.name} has no first stage")

        actions = first_stage.get("actions")
        if not isinstance(actions, list) or not actions or not isinstance(actions[0], dict):
            raise TemplateConfigurationError(
                f"Template {self.name} stage {first_stage.get('name')!r} has no actions"
            )

        configuration = actions[0].get("configuration")
        if not isinstance(configuration, dict):
            raise TemplateConfigurationError(
                f"Template {self.name} source action has no configuration map"
            )
        return configuration
