"""LangGraph reply pipeline (classification, generation, sanitising)."""
