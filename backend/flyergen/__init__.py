"""Image generation providers with retry, circuit breaking and fallback."""
