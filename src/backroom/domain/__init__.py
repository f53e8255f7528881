"""Domain types and text normalization shared by the parser, ledger and pipeline."""
