"""HTTP adapter exposing the focuscore operations."""
