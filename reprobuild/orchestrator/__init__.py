from reprobuild.orchestrator.pipeline import BuildPipeline

__all__ = [
    "BuildPipeline",
]
