"""
Graph resolution over nodnod.

    from settlement import graph as G

    @G.node
    class LoadPayment:
        @classmethod
        async def __compose__(cls, ctx: WebhookContext) -> "LoadPayment":
            ...

    final = await G.resolve(FinalResultNode, ctx)

Each value is pushed into a fresh scope under its runtime type. nodnod
discovers the rest of the graph from the target's ``__compose__`` hints.
"""

from __future__ import annotations

from typing import Any, cast

from nodnod import EventLoopAgent, Node, Scope, Value
from nodnod import scalar_node as node

from settlement.observability import get_logger

log = get_logger(__name__)


class UnresolvedNode(LookupError):
    """Target produced no value: a dependency failed or no case matched."""


async def resolve[T](target: type[T], *values: object) -> T:
    agent = EventLoopAgent.build({cast(type[Node[Any, Any]], target)})
    scope = Scope(detail=target.__name__)
    async with scope:
        for value in values:
            scope.push(Value(type(value), value))
        await agent.run(scope, {})  # type: ignore[attr-defined]
        found = scope.get(target)
        if found is None:
            log.error("graph_unresolved", target=target.__name__)
            raise UnresolvedNode(target.__name__)
        return cast(T, found.value)


__all__ = ("node", "resolve", "UnresolvedNode")
