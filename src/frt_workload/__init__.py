"""Load-generation client for the fixed-ratio trading program on Solana."""
