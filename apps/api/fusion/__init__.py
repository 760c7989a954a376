"""Adaptive fusion of rule, model, and LLM tab categorizations."""
