"""
FlowCanvas Builder

Catalog, graph model, connection rules, gesture handling and workflow
documents. Nothing in this package performs I/O except catalog fetching
and json_graph file access.
"""
