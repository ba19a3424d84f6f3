"""
staticmap test suite

Structure:
- unit/: unit tests per component (parser, cache key, render cache, renderer, HTTP layer, config)
"""
