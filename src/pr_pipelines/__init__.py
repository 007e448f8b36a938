"""Per-pull-request CodePipeline controller.

This package implements a Lambda-hosted controller that keeps one
ephemeral CodePipeline pipeline per open GitHub pull request:
- GitHub webhook envelope parsing
- Pipeline existence checks, cloning and destruction against CodePipeline
- Stateless reconciliation of pull request lifecycle events
- In-band response encoding for the webhook host
"""

__version__ = "0.1.0"
