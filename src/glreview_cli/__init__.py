"""glreview - bulk GitLab merge request tooling with AI code review."""

__version__ = "0.3.0"
