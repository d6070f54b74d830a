"""
Post-deployment validation.

Reads the load balancer address from the deployed stack's outputs and checks
that the service answers on its health-check path.
"""
import logging
import time
from typing import Dict, Any, Optional

import requests
from botocore.exceptions import ClientError

from deployment.aws.utils.aws_clients import get_cloudformation_client
from deployment.aws.utils.errors import PipelineOperationError, from_client_error

logger = logging.getLogger(__name__)

LOAD_BALANCER_OUTPUT = "loadBalancerUrl"


class DeploymentHealthChecker:
    """Reachability check of a deployed environment."""

    def __init__(self, cloudformation_client=None,
                 session: Optional[requests.Session] = None,
                 request_timeout: int = 5):
        self.cloudformation_client = cloudformation_client or get_cloudformation_client()
        self.session = session or requests.Session()
        self.request_timeout = request_timeout

    def get_stack_outputs(self, stack_name: str) -> Dict[str, str]:
        try:
            response = self.cloudformation_client.describe_stacks(StackName=stack_name)
        except ClientError as e:
            raise from_client_error(f"Describe stack {stack_name}", e) from e

        stacks = response.get('Stacks', [])
        if not stacks:
            raise PipelineOperationError(f"Stack {stack_name} not found")
        return {o['OutputKey']: o['OutputValue'] for o in stacks[0].get('Outputs', [])}

    def get_load_balancer_address(self, stack_name: str) -> str:
        """Get the public load balancer address exported by the stack."""
        outputs = self.get_stack_outputs(stack_name)
        # Stage-wrapped stacks suffix output keys with a hash
        for key, value in outputs.items():
            if key == LOAD_BALANCER_OUTPUT or key.startswith(LOAD_BALANCER_OUTPUT):
                return value
        raise PipelineOperationError(
            f"Stack {stack_name} has no {LOAD_BALANCER_OUTPUT} output "
            f"(found: {', '.join(sorted(outputs)) or 'none'})"
        )

    def check_endpoint(self, address: str, path: str = "/health",
                       attempts: int = 5, delay: float = 10) -> Dict[str, Any]:
        """
        Request the health-check path until it answers 2xx or attempts run out.

        Returns:
            Dict with url, healthy flag, last status code and attempts used
        """
        base = address if address.startswith(("http://", "https://")) else f"http://{address}"
        url = f"{base.rstrip('/')}{path}"

        result = {'url': url, 'healthy': False, 'status_code': None, 'attempts': 0, 'error': None}

        for attempt in range(1, attempts + 1):
            result['attempts'] = attempt
            try:
                response = self.session.get(url, timeout=self.request_timeout)
                result['status_code'] = response.status_code
                result['error'] = None
                if response.ok:
                    result['healthy'] = True
                    logger.info(f"✅ {url} answered {response.status_code}")
                    return result
                logger.warning(f"Attempt {attempt}/{attempts}: {url} answered {response.status_code}")
            except requests.RequestException as e:
                result['error'] = str(e)
                logger.warning(f"Attempt {attempt}/{attempts}: {url} unreachable: {e}")

            if attempt < attempts:
                time.sleep(delay)

        logger.error(f"❌ {url} not healthy after {attempts} attempts")
        return result

    def check_stack(self, stack_name: str, path: str = "/health",
                    attempts: int = 5, delay: float = 10) -> Dict[str, Any]:
        address = self.get_load_balancer_address(stack_name)
        result = self.check_endpoint(address, path=path, attempts=attempts, delay=delay)
        result['stack_name'] = stack_name
        return result
