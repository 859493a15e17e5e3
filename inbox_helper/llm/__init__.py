"""LLM provider access"""
