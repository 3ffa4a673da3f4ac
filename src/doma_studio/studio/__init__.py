"""Bridge layer exposing the template store to a UI host."""
