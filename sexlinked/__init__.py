"""Classify scaffolds and loci as sex-linked from per-sex heterozygosity and depth."""

__version__ = "0.1.0"
