"""Finite volume discretization schemes, their control volume geometry and the time
level bookkeeping of implicit time discretizations.

Two schemes are available: the element-centered finite volume scheme, where each cell
is a control volume, and the vertex-centered box scheme, where a control volume is
formed around each node.

"""
