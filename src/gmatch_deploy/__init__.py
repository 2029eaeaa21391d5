"""Release orchestrator for the G-Match application on Kubernetes."""

__version__ = "1.0.0"
