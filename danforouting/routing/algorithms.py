from collections import deque
from typing import List, Optional

from ..graph.graph_builder import segments_from
from ..models.route_segments import RouteSegment

# Chains longer than this are too unreliable to offer
MAX_SEGMENT_DEPTH = 3


def find_segment_paths(graph, start_id: str, end_id: str, max_depth: int = MAX_SEGMENT_DEPTH,
                       limit: int = 3, logger=None) -> List[List[RouteSegment]]:
    """
    Bounded-depth breadth-first search over the segment graph.

    Visited locations are tracked per path, so a location may appear on
    several candidate paths but never twice on the same one. Paths come
    back in BFS order (fewest segments first), at most ``limit`` of them.
    """
    if start_id == end_id or start_id not in graph:
        return []

    found: List[List[RouteSegment]] = []
    queue = deque([(start_id, [], frozenset([start_id]))])
    expanded = 0
    while queue and len(found) < limit:
        node, path, visited = queue.popleft()
        expanded += 1
        for next_id, segment in segments_from(graph, node):
            if next_id in visited:
                continue
            next_path = path + [segment]
            if next_id == end_id:
                found.append(next_path)
                if len(found) >= limit:
                    break
            elif len(next_path) < max_depth:
                queue.append((next_id, next_path, visited | {next_id}))

    if logger:
        logger.debug(f"BFS {start_id} -> {end_id}: {len(found)} paths, {expanded} nodes expanded")
    return found


def find_segment_chain(graph, start_id: str, end_id: str,
                       max_depth: int = MAX_SEGMENT_DEPTH) -> Optional[List[RouteSegment]]:
    """Fewest-segment chain from start to end, or None"""
    paths = find_segment_paths(graph, start_id, end_id, max_depth=max_depth, limit=1)
    return paths[0] if paths else None
