from __future__ import annotations

from dataclasses import dataclass

from progress_engine.config import Settings
from progress_engine.paths.evaluators import EvaluatorRegistry, build_evaluators
from progress_engine.progress.calculators import ProgressCalculator, get_calculator


@dataclass(frozen=True)
class EngineContext:
    """Strategies and thresholds resolved once from configuration."""

    settings: Settings
    calculator: ProgressCalculator
    evaluators: EvaluatorRegistry


def build_context(settings: Settings) -> EngineContext:
    return EngineContext(
        settings=settings,
        calculator=get_calculator(settings.progress_calculator),
        evaluators=build_evaluators(settings.lms_mode, settings.default_prerequisite_mode),
    )
