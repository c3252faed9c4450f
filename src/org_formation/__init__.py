"""
Top-level package for the org-formation bootstrap tooling.

Components live in subpackages; `pipeline_bootstrap` provisions the state
bucket and the CodePipeline stacks that run organization deployments.
"""

__all__: list[str] = []
