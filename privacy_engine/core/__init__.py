"""Cross-cutting building blocks: errors, clock, audit emission."""
