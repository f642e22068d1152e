from .controller import StageTurnController
from .pipeline import PipelineUpdate, StagePipeline

__all__ = ["StageTurnController", "StagePipeline", "PipelineUpdate"]
