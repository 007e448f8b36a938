"""Pytest configuration for all tests."""

import copy
import os
import sys
import threading
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

# Add src directory to Python path so tests run without an install
src_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src'))
if src_dir not in sys.path:
    sys.path.insert(0, src_dir)


TEMPLATE_NAME = 'pr-template'

CONTROLLER_ENV_VARS = (
    'GITHUB_OAUTH_TOKEN',
    'CODEPIPELINE_TEMPLATE',
    'AWS_REGION',
    'MAX_RETRIES',
    'INITIAL_BACKOFF',
    'MAX_BACKOFF',
    'CONNECT_TIMEOUT',
    'READ_TIMEOUT',
    'UNKNOWN_STATE_POLICY',
    'LOG_LEVEL',
    'PROMETHEUS_GATEWAY_URL',
)


def make_template_declaration(name=TEMPLATE_NAME):
    """Return a GetPipeline "pipeline" member for a GitHub-sourced pipeline."""
    return {
        'name': name,
        'roleArn': 'arn:aws:iam::123456789012:role/codepipeline-service',
        'artifactStore': {'type': 'S3', 'location': 'acme-pipeline-artifacts'},
        'stages': [
            {
                'name': 'Source',
                'actions': [
                    {
                        'name': 'GitHub',
                        'actionTypeId': {
                            'category': 'Source',
                            'owner': 'ThirdParty',
                            'provider': 'GitHub',
                            'version': '1',
                        },
                        'configuration': {
                            'Owner': 'acme',
                            'Repo': 'widgets',
                            'Branch': 'main',
                            'OAuthToken': '****',
                        },
                        'outputArtifacts': [{'name': 'SourceOutput'}],
                        'runOrder': 1,
                    }
                ],
            },
            {
                'name': 'Build',
                'actions': [
                    {
                        'name': 'CodeBuild',
                        'actionTypeId': {
                            'category': 'Build',
                            'owner': 'AWS',
                            'provider': 'CodeBuild',
                            'version': '1',
                        },
                        'configuration': {'ProjectName': 'widgets-build'},
                        'inputArtifacts': [{'name': 'SourceOutput'}],
                        'runOrder': 1,
                    }
                ],
            },
        ],
        'version': 3,
    }


def client_error(code, operation='GetPipeline', message=None, status=400):
    """Build a botocore ClientError with the given error code."""
    return ClientError(
        {
            'Error': {'Code': code, 'Message': message or code},
            'ResponseMetadata': {'HTTPStatusCode': status},
        },
        operation,
    )


def create_mock_codepipeline(template=None):
    """Create a mock CodePipeline client that simulates service behavior.

    Returns:
        Tuple of (mock client, storage dict of pipeline name -> declaration)
    """
    template = template or make_template_declaration()
    storage = {template['name']: template}
    lock = threading.Lock()

    mock_client = MagicMock()

    def mock_get_pipeline(name):
        with lock:
            if name in storage:
                return {'pipeline': copy.deepcopy(storage[name]), 'metadata': {}}
        raise client_error('PipelineNotFoundException', 'GetPipeline',
                           f'Account does not have a pipeline with name {name}')

    def mock_create_pipeline(pipeline):
        with lock:
            if pipeline['name'] in storage:
                raise client_error('PipelineNameInUseException', 'CreatePipeline',
                                   f"{pipeline['name']} is already in use")
            storage[pipeline['name']] = copy.deepcopy(pipeline)
        return {'pipeline': pipeline}

    def mock_delete_pipeline(name):
        with lock:
            if name not in storage:
                raise client_error('PipelineNotFoundException', 'DeletePipeline')
            del storage[name]
        return {}

    mock_client.get_pipeline.side_effect = mock_get_pipeline
    mock_client.create_pipeline.side_effect = mock_create_pipeline
    mock_client.delete_pipeline.side_effect = mock_delete_pipeline

    return mock_client, storage


@pytest.fixture
def mock_codepipeline():
    """Mock CodePipeline client and its backing storage."""
    return create_mock_codepipeline()


@pytest.fixture
def template_declaration():
    """A template pipeline declaration."""
    return make_template_declaration()


@pytest.fixture
def controller_env(monkeypatch):
    """Environment with every controller variable cleared except the required ones."""
    for name in CONTROLLER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv('CODEPIPELINE_TEMPLATE', TEMPLATE_NAME)
    monkeypatch.setenv('GITHUB_OAUTH_TOKEN', 'gho_testtoken123')
    return monkeypatch
