"""Search providers, page scraping and reachability checks."""
