"""
pipeline.py: the shared 4-stage contract every compute unit follows.

    start(op, **operands)   latch operands, clear flags      IDLE -> COMPUTING
    tick()                  unpack + compute                 COMPUTING -> NORMALIZING
    tick()                  normalize + pack                 NORMALIZING -> DONE
    collect()               hand back the result             DONE -> IDLE

`run()` is the synchronous form: start, tick until done, collect.
One operation in flight per unit; starting a busy unit is a caller bug.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional

from .formats import StatusFlags

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE        = "idle"
    COMPUTING   = "computing"
    NORMALIZING = "normalizing"
    DONE        = "done"


class UnitBusyError(RuntimeError):
    """start() was called while an operation was still in flight."""


class Unit:
    """
    Base class for the compute units.

    Subclasses define OPCODES ({code: name}) and override the four stage
    hooks. Each hook receives the opcode and whatever the previous stage
    returned; `pack` returns the unit's result object.
    """

    OPCODES: Dict[int, str] = {}

    def __init__(self) -> None:
        self.state = PipelineState.IDLE
        self.flags = StatusFlags()
        self.result: Any = None
        self.ticks = 0
        self._op: Optional[int] = None
        self._operands: Dict[str, Any] = {}
        self._work: Any = None

    # ---------- control surface ----------

    @property
    def busy(self) -> bool:
        return self.state in (PipelineState.COMPUTING, PipelineState.NORMALIZING)

    @property
    def done(self) -> bool:
        return self.state is PipelineState.DONE

    def start(self, op: int, **operands) -> None:
        if self.busy:
            raise UnitBusyError(f"{type(self).__name__} is busy with op {self._op}")
        if op not in self.OPCODES:
            raise ValueError(f"{type(self).__name__}: unknown opcode {op} (expected one of {sorted(self.OPCODES)})")
        self.flags = StatusFlags()
        self.result = None
        self.ticks = 0
        self._op = op
        self._operands = operands
        self._work = None
        self.state = PipelineState.COMPUTING
        logger.debug("%s start %s", type(self).__name__, self.OPCODES[op])

    def tick(self) -> PipelineState:
        """Advance one stage."""
        if self.state is PipelineState.COMPUTING:
            try:
                work = self.unpack(self._op, **self._operands)
            except (TypeError, ValueError):
                # malformed operands: drop the operation so the unit stays usable
                self.state = PipelineState.IDLE
                raise
            self._work = self.compute(self._op, work)
            self.state = PipelineState.NORMALIZING
        elif self.state is PipelineState.NORMALIZING:
            work = self.normalize(self._op, self._work)
            self.result = self.pack(self._op, work)
            self._work = None
            self.state = PipelineState.DONE
            logger.debug("%s done %s flags=%s", type(self).__name__, self.OPCODES[self._op], self.flags)
        elif self.state is PipelineState.DONE:
            self.state = PipelineState.IDLE
        if self.state is not PipelineState.IDLE:
            self.ticks += 1
        return self.state

    def collect(self) -> Any:
        """Read the result of a finished operation and return to IDLE."""
        if not self.done:
            raise RuntimeError(f"{type(self).__name__} has no finished result (state={self.state.value})")
        self.state = PipelineState.IDLE
        return self.result

    def run(self, op: int, **operands) -> Any:
        self.start(op, **operands)
        while not self.done:
            self.tick()
        return self.collect()

    # ---------- stage hooks ----------

    def unpack(self, op: int, **operands) -> Any:
        return operands

    def compute(self, op: int, work: Any) -> Any:
        return work

    def normalize(self, op: int, work: Any) -> Any:
        return work

    def pack(self, op: int, work: Any) -> Any:
        raise NotImplementedError
