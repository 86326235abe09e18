"""Range tiling, fetching, reassembly and checkpoint validation."""
