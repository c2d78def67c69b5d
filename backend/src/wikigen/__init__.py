"""Dependency-aware, streaming wiki generator for codebases."""
