"""Daily quota record stores."""
