"""EduChain marketplace core."""
