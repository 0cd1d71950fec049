"""Direct messages between users who have unlocked chat."""
