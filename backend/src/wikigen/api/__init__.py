"""HTTP surface for the wiki generator."""
