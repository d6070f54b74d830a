"""
Deployment module for operating the trade store release pipeline.

This module contains the operator-side components:
- Pipeline status monitoring and post-deployment health checks
- Approval, release and retry actions on the deployed pipeline
- AWS client management shared by the tools
"""
