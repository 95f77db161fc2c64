"""Connection-scoped chat store."""
