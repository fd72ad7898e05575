from typing import Callable, Dict, List

from reprobuild.common.dto.build import PipelineDefinition
from reprobuild.common.exceptions.base_exceptions import DefinitionError
from reprobuild.recipes import ruffle_web


_RECIPES: Dict[str, Callable[[], PipelineDefinition]] = {
    ruffle_web.NAME: ruffle_web.build_definition,
}


def available_recipes() -> List[str]:
    return sorted(_RECIPES)


def get_recipe(name: str) -> PipelineDefinition:
    factory = _RECIPES.get(name)
    if factory is None:
        raise DefinitionError(
            f"Unknown recipe '{name}'. Available: {', '.join(available_recipes())}",
            source=name,
        )
    return factory()


__all__ = [
    "available_recipes",
    "get_recipe",
]
