"""Generation pipeline - prompt to storyboards, clips, voiceover and score."""

from .bridges import LogCallback, PersistenceBridge, ProjectCallback
from .orchestrator import (
    GenerationDependencies,
    GenerationOptions,
    GenerationPipeline,
    PipelineCancelledError,
    PipelineError,
    PipelineRun,
    PipelineStateError,
    run_generation_pipeline,
)
