"""The subpackage ``grids`` contains the geometrical representation of the domain.

Next to the base class representing a single grid, structured grids are provided, as
well as functionality to partition a grid and to present the partitioned grid to each
rank of a distributed simulation.

"""
