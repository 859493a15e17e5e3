"""Infrastructure - settings, database, schema"""
