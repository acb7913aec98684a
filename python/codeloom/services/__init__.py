"""Workspace engine services.

The leaf services (extraction, version history, quota, export) are pure
logic; the workspace module composes them with the LLM layer and the stores.
"""

from codeloom.services.export import export_artifact
from codeloom.services.extractor import ArtifactExtractor, extract_artifact, message_prose
from codeloom.services.history import VersionHistory
from codeloom.services.quota import QuotaGovernor, QuotaState

__all__ = [
    "ArtifactExtractor",
    "QuotaGovernor",
    "QuotaState",
    "VersionHistory",
    "export_artifact",
    "extract_artifact",
    "message_prose",
]
