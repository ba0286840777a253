"""Edge proxy for GitHub raw files that busts stale caches by commit SHA."""
