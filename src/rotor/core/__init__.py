"""Core pool logic: field encoding, commitments, accumulator and protocols."""
