"""LLM access (Gemini) for action extraction"""
