"""Logging and JAX setup shared by the package and the run scripts."""
