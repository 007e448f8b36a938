"""Tests for the Lambda handler and the webhook-to-result control flow."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from hypothesis import given, settings, strategies as st

from conftest import TEMPLATE_NAME, client_error, create_mock_codepipeline
from pr_pipelines import handler as handler_module
from pr_pipelines.codepipeline import PipelineServiceClient
from pr_pipelines.handler import handle_event, lambda_handler
from pr_pipelines.reconciler import ReconcileAction, ReconciliationOutcome, Reconciler


def _pull_request(state="open", number=42, branch="feature-x", delivery="abc123"):
    return {
        "header": {"X-GitHub-Event": "pull_request", "X-GitHub-Delivery": delivery},
        "body": {"number": number, "state": state, "head": {"ref": branch}},
    }


def _reconciler(codepipeline):
    return Reconciler(
        client=PipelineServiceClient(codepipeline_client=codepipeline, sleep=lambda s: None),
        template_name=TEMPLATE_NAME,
        oauth_token_provider=lambda: "gho_testtoken123",
    )


@pytest.fixture
def lambda_env(controller_env, monkeypatch):
    """Controller environment with boto3 patched to a mock CodePipeline."""
    codepipeline, storage = create_mock_codepipeline()
    monkeypatch.setattr(handler_module, "_metrics", None)
    with patch("pr_pipelines.codepipeline.client.boto3") as boto3_module:
        boto3_module.client.return_value = codepipeline
        yield codepipeline, storage


@pytest.fixture
def context():
    return SimpleNamespace(aws_request_id="req-123")


class TestHandleEvent:
    """Tests for handle_event."""

    def test_open_creates_pipeline(self, mock_codepipeline):
        codepipeline, _ = mock_codepipeline

        result = handle_event(_pull_request(), "req-1", _reconciler(codepipeline))

        assert result.to_dict() == {
            "header": {"X-GitHub-Delivery": "abc123"},
            "status": "ok",
            "httpStatus": 200,
            "requestId": "req-1",
        }
        codepipeline.create_pipeline.assert_called_once()
        created = codepipeline.create_pipeline.call_args.kwargs["pipeline"]
        assert created["name"] == "pr-42"
        assert created["stages"][0]["actions"][0]["configuration"]["Branch"] == "feature-x"

    def test_closed_destroys_pipeline(self, mock_codepipeline):
        codepipeline, storage = mock_codepipeline
        storage["pr-42"] = {"name": "pr-42"}

        result = handle_event(_pull_request(state="closed"), "req-1", _reconciler(codepipeline))

        assert result.status.value == "ok"
        assert result.header == {"X-GitHub-Delivery": "abc123"}
        codepipeline.delete_pipeline.assert_called_once_with(name="pr-42")

    def test_unhandled_event_kind(self, mock_codepipeline):
        codepipeline, _ = mock_codepipeline
        event = {"header": {"X-GitHub-Event": "push", "X-GitHub-Delivery": "d1"}, "body": {}}

        result = handle_event(event, "req-1", _reconciler(codepipeline))

        data = result.to_dict()
        assert data["status"] == "error"
        assert data["httpStatus"] == 200
        assert data["Error"] == "unhandled push"
        codepipeline.get_pipeline.assert_not_called()

    def test_malformed_envelope(self, mock_codepipeline):
        codepipeline, _ = mock_codepipeline

        result = handle_event("not json", "req-1", _reconciler(codepipeline))

        assert result.status.value == "error"
        assert result.error.startswith("malformed payload")
        assert result.http_status == 200

    def test_malformed_pull_request_echoes_delivery(self, mock_codepipeline):
        codepipeline, _ = mock_codepipeline
        event = _pull_request()
        del event["body"]["head"]

        result = handle_event(event, "req-1", _reconciler(codepipeline))

        assert result.status.value == "error"
        assert "head" in result.error
        assert result.header == {"X-GitHub-Delivery": "abc123"}
        codepipeline.get_pipeline.assert_not_called()

    def test_failed_reconciliation_is_in_band(self):
        codepipeline = MagicMock()
        codepipeline.get_pipeline.side_effect = client_error("AccessDeniedException")

        result = handle_event(_pull_request(), "req-1", _reconciler(codepipeline))

        assert result.status.value == "error"
        assert result.http_status == 200
        assert "unable to determine" in result.error
        assert result.header == {"X-GitHub-Delivery": "abc123"}

    def test_benign_outcome_reports_ok(self):
        reconciler = MagicMock()
        reconciler.reconcile.return_value = ReconciliationOutcome(
            pipeline="pr-42",
            action=ReconcileAction.NONE,
            detail="pipeline created by a concurrent invocation",
        )

        result = handle_event(_pull_request(), "req-1", reconciler)

        assert result.status.value == "ok"


class TestLambdaHandler:
    """Tests for lambda_handler."""

    def test_open_event_end_to_end(self, lambda_env, context):
        codepipeline, storage = lambda_env

        response = lambda_handler(_pull_request(), context)

        assert response == {
            "header": {"X-GitHub-Delivery": "abc123"},
            "status": "ok",
            "httpStatus": 200,
            "requestId": "req-123",
        }
        assert "pr-42" in storage

    def test_json_text_event(self, lambda_env, context):
        response = lambda_handler(json.dumps(_pull_request(state="closed")), context)

        assert response["status"] == "ok"

    def test_push_event(self, lambda_env, context):
        event = {"header": {"X-GitHub-Event": "push", "X-GitHub-Delivery": "d1"}, "body": {}}

        response = lambda_handler(event, context)

        assert response["status"] == "error"
        assert response["httpStatus"] == 200
        assert "push" in response["Error"]

    def test_invalid_configuration_is_in_band(self, lambda_env, context):
        lambda_env_codepipeline, _ = lambda_env
        with patch.dict("os.environ", {"CODEPIPELINE_TEMPLATE": ""}):
            response = lambda_handler(_pull_request(), context)

        assert response["status"] == "error"
        assert response["Error"].startswith("invalid configuration")
        assert response["header"] == {"X-GitHub-Delivery": "abc123"}
        lambda_env_codepipeline.get_pipeline.assert_not_called()

    def test_missing_credential_is_in_band(self, lambda_env, context, monkeypatch):
        codepipeline, storage = lambda_env
        monkeypatch.delenv("GITHUB_OAUTH_TOKEN")

        response = lambda_handler(_pull_request(), context)

        assert response["status"] == "error"
        assert response["Error"].startswith("missing credential")
        assert "pr-42" not in storage

    def test_template_misconfiguration_is_in_band(self, lambda_env, context):
        _, storage = lambda_env
        storage[TEMPLATE_NAME]["stages"] = [{"name": "Source", "actions": []}]

        response = lambda_handler(_pull_request(), context)

        assert response["status"] == "error"
        assert response["httpStatus"] == 200
        assert response["Error"].startswith("internal error: TemplateConfigurationError")
        assert response["header"] == {"X-GitHub-Delivery": "abc123"}

    def test_without_context(self, lambda_env):
        response = lambda_handler(_pull_request(), None)

        assert response["requestId"] == ""
        assert response["status"] == "ok"

    def test_invocations_are_recorded(self, lambda_env, context):
        lambda_handler(_pull_request(), context)
        lambda_handler({"header": {"X-GitHub-Event": "push"}, "body": {}}, context)

        registry = handler_module.get_metrics().registry
        assert registry.get_sample_value("pr_pipelines_invocations_total", {"status": "ok"}) == 1.0
        assert registry.get_sample_value("pr_pipelines_invocations_total", {"status": "error"}) == 1.0

    @pytest.mark.parametrize(
        "event",
        [
            {"header": {"X-GitHub-Event": "pull_request", "X-GitHub-Delivery": "d"}, "body": "[" * 200000},
            "[" * 200000,
            {"header": {1: "x", "X-GitHub-Event": "pull_request"}, "body": {}},
            {"header": {"X-GitHub-Event": "pull_request"}, "body": b"\xff\xfe"},
            None,
        ],
        ids=["nested-body", "nested-envelope", "non-string-header-name", "invalid-utf8-body", "none"],
    )
    def test_hostile_envelopes_are_in_band(self, lambda_env, context, event):
        codepipeline, _ = lambda_env

        response = lambda_handler(event, context)

        assert response["status"] == "error"
        assert response["httpStatus"] == 200
        assert response["Error"].startswith("malformed payload")
        codepipeline.get_pipeline.assert_not_called()


json_values = st.recursive(
    st.none() | st.booleans() | st.integers() | st.text(max_size=20),
    lambda children: st.lists(children, max_size=4)
    | st.dictionaries(st.text(max_size=10), children, max_size=4),
    max_leaves=20,
)


@given(
    st.one_of(
        json_values,
        st.fixed_dictionaries({
            "header": st.dictionaries(
                st.sampled_from(["X-GitHub-Event", "X-GitHub-Delivery", "Other"]),
                st.one_of(st.just("pull_request"), st.text(max_size=10)),
            ),
            "body": json_values,
        }),
    )
)
@settings(max_examples=200)
def test_handle_event_always_returns_well_formed_result(event):
    """For any input, handle_event returns a result with httpStatus 200 and never raises."""
    codepipeline, _ = create_mock_codepipeline()

    result = handle_event(event, "req-1", _reconciler(codepipeline))

    data = result.to_dict()
    assert data["httpStatus"] == 200
    assert data["status"] in ("ok", "error")
    assert data["requestId"] == "req-1"
    if data["status"] == "error":
        assert data["Error"]


@given(
    st.one_of(
        json_values,
        st.fixed_dictionaries({
            "header": st.dictionaries(
                st.one_of(st.sampled_from(["X-GitHub-Event", "X-GitHub-Delivery"]), st.integers()),
                st.one_of(st.just("pull_request"), st.text(max_size=10), st.integers()),
            ),
            "body": st.one_of(json_values, st.text(alphabet="[{\"", max_size=50)),
        }),
    )
)
@settings(max_examples=100)
def test_lambda_handler_never_raises(event):
    """For any envelope, lambda_handler answers in-band with httpStatus 200."""
    codepipeline, _ = create_mock_codepipeline()
    env = {"CODEPIPELINE_TEMPLATE": TEMPLATE_NAME, "GITHUB_OAUTH_TOKEN": "gho_testtoken123"}

    with patch.dict("os.environ", env), patch("pr_pipelines.codepipeline.client.boto3") as boto3_module:
        boto3_module.client.return_value = codepipeline
        response = lambda_handler(event, SimpleNamespace(aws_request_id="req-1"))

    assert response["httpStatus"] == 200
    assert response["status"] in ("ok", "error")
    assert response["requestId"] == "req-1"
