from src.runner.main import (
    PipelineResult,
    PipelineServices,
    build_services,
    load_readings,
    run_pipeline,
)

__all__ = [
    "PipelineResult",
    "PipelineServices",
    "build_services",
    "load_readings",
    "run_pipeline",
]
