"""Services for provider registry, circuit breaking, retry and fallback."""
