"""Customer feedback portal: duplicate detection and merge reconciliation."""
