from .walker import HierarchyWalker, TraversalContext, WalkReport

__all__ = ["HierarchyWalker", "TraversalContext", "WalkReport"]
