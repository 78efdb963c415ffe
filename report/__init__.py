"""
Report package: JSON, Markdown and HTML renderers.
"""
