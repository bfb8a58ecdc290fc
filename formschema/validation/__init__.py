"""Schema nodes, the validation engine, derivations and type inference."""
