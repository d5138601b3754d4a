"""Trip simulation: pure tick transition plus live and replay drivers."""
