"""Process-wide table mapping node type tags to executor factories.

Node modules register themselves at import time through :func:`register_node`;
importing :mod:`nodeflow.nodes` is the one explicit initialization phase. The
first :meth:`NodeExecutorRegistry.lookup` freezes the table so the set of
types cannot change while graphs are running.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, List

from nodeflow.errors import DuplicateRegistration, RegistryFrozen, UnknownNodeType
from nodeflow.runtime.contracts import ExecutorFactory

logger = logging.getLogger(__name__)


class NodeExecutorRegistry:

    def __init__(self) -> None:
        self._factories: Dict[str, ExecutorFactory] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def register(self, type_tag: str, factory: ExecutorFactory) -> None:
        with self._lock:
            if type_tag in self._factories:
                raise DuplicateRegistration(type_tag)
            if self._frozen:
                raise RegistryFrozen(type_tag)
            self._factories[type_tag] = factory
        logger.debug("registered node type %s", type_tag)

    def lookup(self, type_tag: str) -> ExecutorFactory:
        self._frozen = True
        try:
            return self._factories[type_tag]
        except KeyError:
            raise UnknownNodeType(type_tag) from None

    def __contains__(self, type_tag: str) -> bool:
        return type_tag in self._factories

    def list_types(self) -> List[str]:
        return sorted(self._factories)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def fork(self) -> "NodeExecutorRegistry":
        """Return an unfrozen registry with the same factories, open for additions."""

        forked = NodeExecutorRegistry()
        forked._factories = dict(self._factories)
        return forked

    def check_complete(self, expected: Iterable[str]) -> None:
        """Raise :class:`UnknownNodeType` for the first expected tag with no factory."""

        for type_tag in expected:
            if type_tag not in self._factories:
                raise UnknownNodeType(type_tag)

    def describe(self) -> Dict[str, Any]:
        described = {}
        for type_tag, factory in sorted(self._factories.items()):
            describe = getattr(factory, "describe", None)
            described[type_tag] = describe() if callable(describe) else {}
        return described


REGISTRY = NodeExecutorRegistry()


def register_node(cls):
    """Class decorator registering an executor class under its ``type_tag``."""

    REGISTRY.register(cls.type_tag, cls)
    return cls
