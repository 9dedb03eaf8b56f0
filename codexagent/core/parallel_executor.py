"""
Fan-out executor for batches of independent tool calls.

Calls are partitioned so that any two calls touching the same path (or a
path inside the other's directory) land in the same partition and run in
order. Partitions run concurrently in worker threads and are all joined
before results are returned. Sequential execution is the default.
"""

import asyncio
import logging
import posixpath
from typing import Dict, List, Optional, Set

from codexagent.core.response_parser import ToolCall
from codexagent.core.tools.base import ToolResult
from codexagent.core.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)

PATH_ARGUMENTS = ("path", "old_path", "new_path", "source_path", "destination_path")


def call_paths(call: ToolCall) -> Set[str]:
    paths = set()
    for key in PATH_ARGUMENTS:
        value = call.arguments.get(key)
        if isinstance(value, str) and value.strip():
            paths.add(posixpath.normpath(value.strip().replace("\\", "/")))
    return paths


def _overlaps(a: str, b: str) -> bool:
    if a == b or a == "." or b == ".":
        return True
    return a.startswith(b + "/") or b.startswith(a + "/")


def partition_calls(calls: List[ToolCall]) -> List[List[int]]:
    """
    Group call indices into partitions with no path overlap between
    partitions. Indices keep their original order inside a partition.
    """
    parent = list(range(len(calls)))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    paths = [call_paths(c) for c in calls]
    for i in range(len(calls)):
        for j in range(i + 1, len(calls)):
            if any(_overlaps(a, b) for a in paths[i] for b in paths[j]):
                parent[find(j)] = find(i)

    groups: Dict[int, List[int]] = {}
    for i in range(len(calls)):
        groups.setdefault(find(i), []).append(i)
    return sorted(groups.values(), key=lambda g: g[0])


class ParallelToolExecutor:
    def __init__(self, executor: ToolExecutor, parallel: bool = False):
        self.executor = executor
        self.parallel = parallel

    async def execute_all(self, calls: List[ToolCall]) -> List[ToolResult]:
        """Execute every call; results come back in input order."""
        if not self.parallel or len(calls) < 2:
            return [self.executor.execute_call(c) for c in calls]

        results: List[Optional[ToolResult]] = [None] * len(calls)
        groups = partition_calls(calls)
        logger.debug(f"Running {len(calls)} tool calls in {len(groups)} partition(s)")

        async def run_group(indices: List[int]) -> None:
            for i in indices:
                results[i] = await asyncio.to_thread(self.executor.execute_call, calls[i])

        await asyncio.gather(*(run_group(g) for g in groups))
        return [r for r in results if r is not None]
