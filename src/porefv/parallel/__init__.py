"""Exchange of degrees of freedom between the ranks of a partitioned simulation."""
