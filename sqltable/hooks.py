"""
    Before and after hook chains keyed by verb. A before hook receives
    the verb's positional arguments and returns `Continue(args)` to pass
    (possibly rewritten) arguments down the chain, or `INTERRUPT` to
    short-circuit the whole operation. An after hook receives the
    result tuple and returns a new tuple, or any other single value,
    which becomes the whole result; the operation's value is the last
    element of the tuple once the chain completes. The most
    recently registered hook runs first.
"""

from __future__ import annotations
from .errors import tert, vert
from .instrumentation import get_logger
from dataclasses import dataclass
from typing import Any, Callable


logger = get_logger('hooks')


@dataclass(frozen=True)
class Continue:
    """Continue the operation with these positional arguments."""
    args: tuple


class Interrupt:
    """Stop the operation; the verb returns its no-op value."""
    def __repr__(self) -> str:
        return 'INTERRUPT'


INTERRUPT = Interrupt()


class HookPipeline:
    """Ordered before/after callback chains for the table verbs."""
    verbs: tuple[str] = (
        'insert', 'update', 'delete', 'crease', 'execute', 'query', 'select',
    )
    _before: dict[str, list[Callable]]
    _after: dict[str, list[Callable]]

    def __init__(self) -> None:
        self._before = {verb: [] for verb in self.verbs}
        self._after = {verb: [] for verb in self.verbs}

    def _check(self, verb: str, hook: Callable) -> None:
        vert(verb in self.verbs, f'verb must be one of {self.verbs}')
        tert(callable(hook), 'hook must be callable')

    def add_before(self, verb: str, hook: Callable) -> HookPipeline:
        """Register a before hook; it runs ahead of earlier ones."""
        self._check(verb, hook)
        self._before[verb].insert(0, hook)
        return self

    def add_after(self, verb: str, hook: Callable) -> HookPipeline:
        """Register an after hook; it runs ahead of earlier ones."""
        self._check(verb, hook)
        self._after[verb].insert(0, hook)
        return self

    def remove(self, verb: str, hook: Callable) -> HookPipeline:
        """Remove the hook from both chains of the verb."""
        vert(verb in self.verbs, f'verb must be one of {self.verbs}')
        for chain in (self._before[verb], self._after[verb]):
            if hook in chain:
                chain.remove(hook)
        return self

    def clear(self, verb: str = None) -> HookPipeline:
        """Remove all hooks for a verb, or for every verb if none is
            given.
        """
        verbs = self.verbs if verb is None else (verb,)
        for name in verbs:
            vert(name in self.verbs, f'verb must be one of {self.verbs}')
            self._before[name].clear()
            self._after[name].clear()
        return self

    def has_hooks(self, verb: str) -> bool:
        return bool(self._before.get(verb)) or bool(self._after.get(verb))

    def before(self, verb: str, *args) -> Continue|Interrupt:
        """Run the before chain. Returns `Continue` with the final
            arguments, or `INTERRUPT` if any hook interrupted. A hook
            that returns a plain tuple or list continues with it.
            Raises TypeError for any other return value.
        """
        result = Continue(tuple(args))
        for hook in self._before[verb]:
            returned = hook(*result.args)
            if isinstance(returned, Interrupt):
                logger.debug('%s interrupted by %r', verb, hook)
                return INTERRUPT
            if isinstance(returned, (tuple, list)):
                returned = Continue(tuple(returned))
            tert(isinstance(returned, Continue),
                'before hooks must return Continue, INTERRUPT, or a tuple of args')
            result = returned
        return result

    def after(self, verb: str, *results) -> Any:
        """Run the after chain and return the last element of the final
            result tuple. A hook that returns anything but a tuple
            replaces the result with that single value.
        """
        values = tuple(results)
        for hook in self._after[verb]:
            values = hook(*values)
            if not isinstance(values, tuple):
                values = (values,)
            tert(len(values) > 0, 'after hooks must return a non-empty tuple')
        return values[-1] if len(values) else None
