"""HTTP middleware and error sanitization"""
