"""Physical parameters: boundary conditions, permeability tensors and fluid closure
relations."""
