"""Group expense tracking backend with balance and settlement computation."""
