"""Match requests between users."""
