"""Physical models: the problem interface, volume and flux variables, local residuals
and the storage of the primary variables."""
