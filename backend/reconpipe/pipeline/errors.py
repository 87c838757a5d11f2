"""
Pipeline-specific error types.

All errors inherit from PipelineError for easy catching.
"""


class PipelineError(Exception):
    """Base exception for all pipeline state failures."""
    pass


class InvalidStageTransitionError(PipelineError):
    """Raised when a stage transition would regress the run."""

    def __init__(self, current_stage: str, target_stage: str):
        self.current_stage = current_stage
        self.target_stage = target_stage
        super().__init__(
            f"Invalid stage transition: {current_stage} -> {target_stage}"
        )


class TrackedJobAlreadySetError(PipelineError):
    """Raised when a run already owns a different external job."""

    def __init__(self, current_title: str, new_title: str):
        self.current_title = current_title
        self.new_title = new_title
        super().__init__(
            f"Run already tracks job '{current_title}', refusing '{new_title}'"
        )
