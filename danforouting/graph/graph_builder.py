import networkx as nx


def build_segment_graph(segments, logger):
    """Build a directed multigraph of rideable segments keyed by Location id.

    Several segments may connect the same pair of locations (different
    modes or operators), so each one is its own edge keyed by segment id.
    """
    graph = nx.MultiDiGraph()
    skipped = 0
    for segment in segments:
        if not segment.is_active:
            skipped += 1
            continue
        if segment.start.id == segment.end.id:
            logger.warning(f"Segment {segment.id} starts and ends at {segment.start.id}, skipping")
            skipped += 1
            continue
        for loc in (segment.start, segment.end):
            if loc.id not in graph:
                graph.add_node(loc.id, name=loc.name, lat=loc.lat, lon=loc.lon)
        graph.add_edge(
            segment.start.id,
            segment.end.id,
            key=segment.id,
            segment=segment,
            distance=segment.distance_km,
            duration=segment.duration_min,
            type='ride',
        )

    logger.info(f"Segment graph built: {graph.number_of_nodes()} nodes, {graph.number_of_edges()} edges"
                f" ({skipped} segments skipped)")
    return graph


def segments_from(graph, node_id):
    """Outgoing segments of ``node_id``, shortest ride first"""
    if node_id not in graph:
        return []
    edges = [(v, data['segment']) for _, v, data in graph.out_edges(node_id, data=True)]
    return sorted(edges, key=lambda e: (e[1].duration_min, e[1].id))

