"""Linear and nonlinear solvers and time step control."""
