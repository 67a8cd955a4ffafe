# Data models for adstudio
from .project import (
    ActionBlock,
    AdPlan,
    AdProject,
    AspectRatio,
    CameraDetails,
    CharacterDetails,
    DialogueLine,
    EnvironmentDetails,
    OverlayConfig,
    PipelinePhase,
    ProjectMode,
    ProjectSettings,
    ReferenceFile,
    ReferenceFileType,
    Scene,
    SceneStatus,
    TextOverlayPolicy,
    TTSVoice,
)
from .diagnostics import (
    DiagnosticLevel,
    GeneratedAssetResult,
    NormalizedAssetResult,
    ProviderDiagnostic,
    ProviderName,
    ProviderOperation,
    SerializedError,
    diagnostic,
    normalize_asset_result,
    select_primary_diagnostic,
    serialize_error,
)
from .pipeline import PipelineIssue, PipelineLogEntry, PipelineRunResult

__all__ = [
    # Projects and scenes
    "ActionBlock",
    "AdPlan",
    "AdProject",
    "AspectRatio",
    "CameraDetails",
    "CharacterDetails",
    "DialogueLine",
    "EnvironmentDetails",
    "OverlayConfig",
    "PipelinePhase",
    "ProjectMode",
    "ProjectSettings",
    "ReferenceFile",
    "ReferenceFileType",
    "Scene",
    "SceneStatus",
    "TextOverlayPolicy",
    "TTSVoice",
    # Diagnostics
    "DiagnosticLevel",
    "GeneratedAssetResult",
    "NormalizedAssetResult",
    "ProviderDiagnostic",
    "ProviderName",
    "ProviderOperation",
    "SerializedError",
    "diagnostic",
    "normalize_asset_result",
    "select_primary_diagnostic",
    "serialize_error",
    # Pipeline runs
    "PipelineIssue",
    "PipelineLogEntry",
    "PipelineRunResult",
]
