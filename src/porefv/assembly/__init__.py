"""Element-wise evaluation of the local residuals and assembly of the global sparse
system, including the numerical Jacobian."""
