"""Synthesis tests for the registry stack."""

import json

import pytest
from aws_cdk.assertions import Template

from stacks.registry_stack import PUSH_ACTIONS, RegistryStack


def _as_list(value):
    return value if isinstance(value, list) else [value]


@pytest.fixture
def template(synth_app, registry_settings) -> Template:
    stack = RegistryStack(synth_app, "EcrStack", config=registry_settings)
    return Template.from_stack(stack)


class TestRegistryStack:
    """Test the ECR repository, push user and access key."""

    def test_resource_counts(self, template):
        template.resource_count_is("AWS::ECR::Repository", 1)
        template.resource_count_is("AWS::IAM::User", 1)
        template.resource_count_is("AWS::IAM::AccessKey", 1)
        template.resource_count_is("AWS::IAM::Policy", 1)

    def test_repository_named_from_config(self, template):
        template.has_resource_properties("AWS::ECR::Repository", {"RepositoryName": "demo-repo"})

    def test_repository_destroyed_with_stack(self, template):
        template.has_resource("AWS::ECR::Repository", {
            "DeletionPolicy": "Delete",
            "UpdateReplacePolicy": "Delete",
        })

    def test_images_removed_with_repository(self, template):
        template.has_resource_properties("AWS::ECR::Repository", {"EmptyOnDelete": True})

    def test_retention_keeps_five_images(self, template):
        repository = next(iter(template.find_resources("AWS::ECR::Repository").values()))
        policy = json.loads(repository["Properties"]["LifecyclePolicy"]["LifecyclePolicyText"])

        assert len(policy["rules"]) == 1
        assert policy["rules"][0]["selection"]["countType"] == "imageCountMoreThan"
        assert policy["rules"][0]["selection"]["countNumber"] == 5

    def test_push_user_named_from_config(self, template):
        template.has_resource_properties("AWS::IAM::User", {"UserName": "ecr-push-user"})

    def test_push_user_has_two_statements(self, template):
        policy = next(iter(template.find_resources("AWS::IAM::Policy").values()))
        statements = policy["Properties"]["PolicyDocument"]["Statement"]

        assert len(statements) == 2

        scoped = [s for s in statements if s["Resource"] != "*"]
        unscoped = [s for s in statements if s["Resource"] == "*"]
        assert len(scoped) == 1
        assert len(unscoped) == 1

        assert len(_as_list(scoped[0]["Resource"])) == 1
        assert sorted(_as_list(scoped[0]["Action"])) == sorted(PUSH_ACTIONS)
        assert _as_list(unscoped[0]["Action"]) == ["ecr:GetAuthorizationToken"]

    def test_push_statement_targets_repository(self, template):
        repository_id = next(iter(template.find_resources("AWS::ECR::Repository")))
        policy = next(iter(template.find_resources("AWS::IAM::Policy").values()))
        scoped = [s for s in policy["Properties"]["PolicyDocument"]["Statement"] if s["Resource"] != "*"][0]

        assert scoped["Resource"] == {"Fn::GetAtt": [repository_id, "Arn"]}

    def test_outputs(self, template):
        outputs = template.find_outputs("*")

        assert {
            "EcrRepositoryName",
            "EcrRepositoryUri",
            "AccessKeyIdOutput",
            "SecretAccessKeyOutput",
        } <= set(outputs)

    def test_secret_output_reads_access_key(self, template):
        key_id = next(iter(template.find_resources("AWS::IAM::AccessKey")))
        outputs = template.find_outputs("SecretAccessKeyOutput")

        assert outputs["SecretAccessKeyOutput"]["Value"] == {"Fn::GetAtt": [key_id, "SecretAccessKey"]}
