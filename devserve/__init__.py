"""
devserve - a development file server for front-end work.
"""
__version__ = "1.0.0"
