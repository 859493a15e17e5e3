"""Thread classification, caching and search"""
