"""API routers"""
