"""
Scoring package: Gemini gateway and the deterministic fallback heuristic.
"""
