from __future__ import annotations

import random
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Generic, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict

from ml_server.schemas import ModelKind

InputT = TypeVar("InputT", bound=BaseModel)
OutputT = TypeVar("OutputT", bound=BaseModel)
ParamsT = TypeVar("ParamsT", bound=BaseModel)


class ExecutorParameters(BaseModel):
    """
    Base for executor tunables.

    Frozen so a reader holding a reference always sees one consistent set;
    unknown keys are rejected so admin typos fail loudly.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)


class Executor(ABC, Generic[InputT, OutputT, ParamsT]):
    """
    One pluggable compute backend.

    `compute` must not touch connection state. Tunables change only through
    `reconfigure`, which the registry calls under its exclusive guard.
    """

    kind: ClassVar[ModelKind]
    input_model: ClassVar[Type[BaseModel]]
    output_model: ClassVar[Type[BaseModel]]
    parameters_model: ClassVar[Type[ExecutorParameters]]

    def __init__(self, parameters: Optional[ParamsT] = None, *, rng: Optional[random.Random] = None) -> None:
        self._params: ParamsT = parameters if parameters is not None else self.parameters_model()  # type: ignore[assignment]
        self._rng = rng or random.Random()

    @abstractmethod
    def compute(self, data: InputT) -> OutputT:
        raise NotImplementedError

    def parameters(self) -> ParamsT:
        return self._params

    def reconfigure(self, changes: Mapping[str, Any]) -> ParamsT:
        """
        Merge `changes` over the current tunables and swap them in.

        Raises pydantic.ValidationError and leaves the current set untouched
        when the merged set is invalid.
        """
        merged = {**self._params.model_dump(), **dict(changes)}
        new_params = self.parameters_model.model_validate(merged)
        self._params = new_params  # type: ignore[assignment]
        return new_params
