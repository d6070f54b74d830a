"""Buildspecs for the two CodeBuild projects of the release pipeline."""
import json
from typing import Any, Dict

IMAGE_DEFINITIONS_FILE = "imagedefinitions.json"
IMAGE_TAG_VARIABLE = "imageTag"
ECR_REPO_URI_VARIABLE = "ecr_repo_uri"


def cdk_synth_buildspec() -> Dict[str, Any]:
    """Synthesize the CDK app and keep the whole cloud assembly as the artifact."""
    return {
        "version": "0.2",
        "phases": {
            "install": {
                "commands": [
                    "npm install -g aws-cdk",
                    "pip install .",
                ],
            },
            "build": {
                "commands": [
                    "cdk synth --verbose",
                ],
            },
        },
        "artifacts": {
            "base-directory": "cdk.out",
            "files": "**/*",
        },
    }


def image_definitions(container_name: str, image_uri: str) -> str:
    """One-line JSON consumed by the ECS deploy action."""
    return json.dumps([{"name": container_name, "imageUri": image_uri}], separators=(",", ":"))


def app_image_buildspec(container_name: str, image_tag: str = "latest") -> Dict[str, Any]:
    """Build and push the application image, then export its tag.

    The project must provide ``ecr_repo_uri`` as an environment variable.
    """
    repo = f"${ECR_REPO_URI_VARIABLE}"
    return {
        "version": "0.2",
        "phases": {
            "pre_build": {
                "commands": [
                    "env",
                    f"export tag={image_tag}",
                    f"aws ecr get-login-password --region $AWS_DEFAULT_REGION"
                    f" | docker login --username AWS --password-stdin ${{{ECR_REPO_URI_VARIABLE}%%/*}}",
                ],
            },
            "build": {
                "commands": [
                    f"docker build -t {repo}:$tag .",
                    f"docker push {repo}:$tag",
                ],
            },
            "post_build": {
                "commands": [
                    'echo "in post-build stage"',
                    "printf '[{\"name\":\"%s\",\"imageUri\":\"%s\"}]' "
                    f"{container_name} {repo}:$tag > {IMAGE_DEFINITIONS_FILE}",
                    f"cat {IMAGE_DEFINITIONS_FILE}",
                    f"export {IMAGE_TAG_VARIABLE}=$tag",
                ],
            },
        },
        "env": {
            "exported-variables": [IMAGE_TAG_VARIABLE],
        },
        "artifacts": {
            "files": [IMAGE_DEFINITIONS_FILE],
        },
    }
